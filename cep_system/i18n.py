"""User interface labels in English and German."""

from __future__ import annotations

from typing import Dict, Optional, Tuple

DEFAULT_LANGUAGE = "en"
SUPPORTED_LANGUAGES: Tuple[str, ...] = ("en", "de")
LANGUAGE_NAMES = {"en": "English", "de": "Deutsch"}

TRANSLATIONS: Dict[str, Dict[str, str]] = {
    "en": {
        "line": "Line",
        "station": "Station",
        "tool": "Tool",
        "operation": "Operation",
        "lines": "Lines",
        "stations": "Stations",
        "tools": "Tools",
        "operations": "Operations",
        "name": "Name",
        "comment": "Comment",
        "status_color": "Status",
        "assembly_area": "Assembly area",
        "description": "Description",
        "station_type": "Station type",
        "serial_or_parallel": "Serial or parallel",
        "tool_class": "Tool class",
        "tool_type": "Tool type",
        "ip_address_device": "IP address device",
        "sps_plc_name_spa_service": "PLC name SPA service",
        "sps_db_no_send": "PLC DB no. send",
        "sps_db_no_receive": "PLC DB no. receive",
        "sps_pre_check": "PLC pre-check",
        "sps_address_in_send_db": "PLC address in send DB",
        "sps_address_in_receive_db": "PLC address in receive DB",
        "decision_criteria": "Decision criteria",
        "sequence_group": "Sequence group",
        "sequence": "Sequence",
        "always_perform": "Always perform",
        "q_gate_relevant": "Q-gate relevant",
        "template": "Template",
        "decision_class": "Decision class",
        "saving_class": "Saving class",
        "verification_class": "Verification class",
        "generation_class": "Generation class",
        "operation_decisions": "Operation decisions",
        "red": "Red",
        "amber": "Amber",
        "emerald": "Green",
        "draft": "Draft",
        "none": "All",
        "Save": "Save",
        "Save draft": "Save draft",
        "Discard draft": "Discard draft",
        "Create": "Create",
        "Delete": "Delete",
        "Export": "Export",
        "Import": "Import",
        "Copy": "Copy",
        "Paste": "Paste",
        "Filter": "Filter",
        "language": "Language",
        "Sequence groups": "Sequence groups",
        "No entries": "No entries",
        "DraftConflicts Title": "Conflicting drafts",
        "DraftConflicts Description": (
            "Other users changed fields you have unsaved drafts for. "
            "The values now stored on the server are:"
        ),
        "Understood": "Understood",
    },
    "de": {
        "line": "Linie",
        "station": "Station",
        "tool": "Werkzeug",
        "operation": "Operation",
        "lines": "Linien",
        "stations": "Stationen",
        "tools": "Werkzeuge",
        "operations": "Operationen",
        "name": "Name",
        "comment": "Kommentar",
        "status_color": "Status",
        "assembly_area": "Montagebereich",
        "description": "Beschreibung",
        "station_type": "Stationstyp",
        "serial_or_parallel": "Seriell oder parallel",
        "tool_class": "Werkzeugklasse",
        "tool_type": "Werkzeugtyp",
        "ip_address_device": "IP-Adresse Gerät",
        "sps_plc_name_spa_service": "SPS-Name SPA-Service",
        "sps_db_no_send": "SPS DB-Nr. Senden",
        "sps_db_no_receive": "SPS DB-Nr. Empfangen",
        "sps_pre_check": "SPS Vorprüfung",
        "sps_address_in_send_db": "SPS-Adresse im Sende-DB",
        "sps_address_in_receive_db": "SPS-Adresse im Empfangs-DB",
        "decision_criteria": "Entscheidungskriterium",
        "sequence_group": "Sequenzgruppe",
        "sequence": "Reihenfolge",
        "always_perform": "Immer ausführen",
        "q_gate_relevant": "Q-Gate-relevant",
        "template": "Vorlage",
        "decision_class": "Entscheidungsklasse",
        "saving_class": "Speicherklasse",
        "verification_class": "Prüfklasse",
        "generation_class": "Generierungsklasse",
        "operation_decisions": "Operationsentscheidungen",
        "red": "Rot",
        "amber": "Gelb",
        "emerald": "Grün",
        "draft": "Entwurf",
        "none": "Alle",
        "Save": "Speichern",
        "Save draft": "Entwurf speichern",
        "Discard draft": "Entwurf verwerfen",
        "Create": "Anlegen",
        "Delete": "Löschen",
        "Export": "Exportieren",
        "Import": "Importieren",
        "Copy": "Kopieren",
        "Paste": "Einfügen",
        "Filter": "Filter",
        "language": "Sprache",
        "Sequence groups": "Sequenzgruppen",
        "No entries": "Keine Einträge",
        "DraftConflicts Title": "Konflikte mit Entwürfen",
        "DraftConflicts Description": (
            "Andere Benutzer haben Felder geändert, für die Sie ungespeicherte "
            "Entwürfe haben. Auf dem Server stehen jetzt folgende Werte:"
        ),
        "Understood": "Verstanden",
    },
}


def normalize_language(language: Optional[str]) -> str:
    code = (language or "").strip().lower()[:2]
    return code if code in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


def translate(key: object, language: Optional[str] = DEFAULT_LANGUAGE) -> str:
    """Return the label for ``key``; unknown keys are returned unchanged."""

    text = "" if key is None else str(getattr(key, "value", key))
    table = TRANSLATIONS[normalize_language(language)]
    if text in table:
        return table[text]
    return TRANSLATIONS[DEFAULT_LANGUAGE].get(text, text)


__all__ = [
    "DEFAULT_LANGUAGE",
    "SUPPORTED_LANGUAGES",
    "LANGUAGE_NAMES",
    "TRANSLATIONS",
    "normalize_language",
    "translate",
]
