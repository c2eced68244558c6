import pytest

from voicedesk.core.normalization import (
    NAME_RULES,
    display_token,
    is_goodbye,
    is_vague_reason,
    normalize_name,
)


class TestNormalizeName:

    @pytest.mark.parametrize(
        "spoken,expected",
        [
            ("Juan Pérez", "Juan Pérez"),
            ("juan pérez", "Juan Pérez"),
            ("Hola, soy el señor Juan Pérez.", "Juan Pérez"),
            ("me llamo maría de la cruz", "María de la Cruz"),
            ("Buenos días, mi nombre es Doña Ana López", "Ana López"),
            ("my name is John Smith", "John Smith"),
            ("I am Dr. Lee", "Lee"),
            ("mi número de empleado es 4512", "4512"),
            ("  Pedro   Gómez , gracias ", "Pedro Gómez"),
        ],
    )
    def test_strips_fillers_and_capitalizes(self, spoken, expected):
        assert normalize_name(spoken) == expected

    @pytest.mark.parametrize(
        "spoken",
        ["Juan Pérez", "hola, soy el señor juan pérez", "me llamo maría de la cruz", "4512 Ana", "soy soy Luis"],
    )
    def test_idempotent(self, spoken):
        once = normalize_name(spoken)
        assert normalize_name(once) == once

    @pytest.mark.parametrize("spoken", ["", "hola", "soy", "hola, buenas", "...", None])
    def test_nothing_left(self, spoken):
        assert normalize_name(spoken) == ""

    def test_names_starting_like_fillers_are_kept(self):
        assert normalize_name("Esteban Silva") == "Esteban Silva"
        assert normalize_name("Ingrid Donoso") == "Ingrid Donoso"

    def test_rules_are_ordered_pairs(self):
        for pattern, replacement in NAME_RULES:
            assert hasattr(pattern, "sub")
            assert isinstance(replacement, str)


class TestDisplayToken:

    def test_first_word(self):
        assert display_token("Juan Pérez") == "Juan"

    def test_skips_numeric_words(self):
        assert display_token("4512 Ana López") == "Ana"

    def test_numeric_only(self):
        assert display_token("4512") is None
        assert display_token("") is None


class TestVagueReason:

    @pytest.mark.parametrize("text", ["", "pues", "a ver", "sí", "Sí.", "hola", "ok", "no sé", "mi portal", "tengo un problema"])
    def test_rejected(self, text):
        assert is_vague_reason(text) is True

    @pytest.mark.parametrize(
        "text",
        [
            "tengo un problema con mi nómina de este mes",
            "no puedo acceder a mi contraseña del portal",
            "necesito cambiar mi horario de la semana",
        ],
    )
    def test_accepted(self, text):
        assert is_vague_reason(text) is False


class TestGoodbye:

    @pytest.mark.parametrize("text", ["gracias, adiós", "Adios", "bueno, hasta luego", "chao", "ok bye"])
    def test_goodbye(self, text):
        assert is_goodbye(text) is True

    @pytest.mark.parametrize("text", ["", "gracias", "una pregunta más", "adiosito no"])
    def test_not_goodbye(self, text):
        assert is_goodbye(text) is False
