"""Web interface of the line configuration editor."""
