"""Tests for CPF, CNPJ and phone number validation."""

import pytest

from adoptly.service.documents import is_valid_cnpj, is_valid_cpf, is_valid_phone, only_digits


class TestCpf:
    @pytest.mark.parametrize("cpf", ["52998224725", "529.982.247-25", "11144477735"])
    def test_valid(self, cpf):
        assert is_valid_cpf(cpf)

    @pytest.mark.parametrize(
        "cpf", [None, "", "52998224724", "5299822472", "11111111111", "5299822472a", "00000000000"]
    )
    def test_invalid(self, cpf):
        assert not is_valid_cpf(cpf)


class TestCnpj:
    @pytest.mark.parametrize("cnpj", ["11222333000181", "11.222.333/0001-81", "11222333000262"])
    def test_valid(self, cnpj):
        assert is_valid_cnpj(cnpj)

    @pytest.mark.parametrize("cnpj", [None, "", "11222333000182", "1122233300018", "22222222222222"])
    def test_invalid(self, cnpj):
        assert not is_valid_cnpj(cnpj)


class TestPhone:
    @pytest.mark.parametrize("phone", ["1133334444", "11987654321", "(11) 98765-4321"])
    def test_valid(self, phone):
        assert is_valid_phone(phone)

    @pytest.mark.parametrize("phone", [None, "", "123456789", "119876543210", "11 9876-abcd"])
    def test_invalid(self, phone):
        assert not is_valid_phone(phone)


def test_only_digits_strips_formatting():
    assert only_digits("(11) 98765-4321") == "11987654321"
    assert only_digits("11.222.333/0001-81") == "11222333000181"
    assert only_digits(None) == ""


class TestNonAsciiDigits:
    # Arabic-Indic and fullwidth digits pass str.isdigit() but are not document digits
    @pytest.mark.parametrize(
        "check,value",
        [
            (is_valid_cpf, "٥٢٩٩٨٢٢٤٧٢٥"),
            (is_valid_cpf, "５２９９８２２４７２５"),
            (is_valid_cnpj, "١١٢٢٢٣٣٣٠٠٠١٨١"),
            (is_valid_phone, "١١٩٨٧٦٥٤٣٢١"),
            (is_valid_phone, "(11) ９８７６５-４３２１"),
        ],
    )
    def test_rejected(self, check, value):
        assert not check(value)
