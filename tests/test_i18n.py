import pytest

from cep_system import EntityType
from cep_system.domain import editable_fields
from cep_system.i18n import SUPPORTED_LANGUAGES, TRANSLATIONS, normalize_language, translate


def test_translate_known_keys():
    assert translate("station", "de") == "Station"
    assert translate("tool", "de") == "Werkzeug"
    assert translate("Understood", "de") == "Verstanden"
    assert translate("DraftConflicts Title", "en") == "Conflicting drafts"


def test_translate_accepts_enum_members():
    assert translate(EntityType.LINE, "de") == "Linie"


def test_unknown_key_is_returned_unchanged():
    assert translate("no such label", "de") == "no such label"


def test_unknown_language_falls_back_to_english():
    assert translate("comment", "fr") == "Comment"
    assert normalize_language("de-CH") == "de"
    assert normalize_language(None) == "en"


@pytest.mark.parametrize("language", SUPPORTED_LANGUAGES)
def test_every_field_and_entity_type_is_translated(language):
    table = TRANSLATIONS[language]
    for kind in EntityType:
        assert kind.value in table
        for name in editable_fields(kind):
            assert name in table, f"{name} missing in {language}"


def test_languages_share_keys():
    assert set(TRANSLATIONS["en"]) == set(TRANSLATIONS["de"])
