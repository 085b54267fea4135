"""
test_calculator.py — safe expression evaluation and Indian number formatting.
"""
import math

import pytest

from covernow.agents.chat_agent.calculator import (
    CalculationError,
    evaluate,
    format_number,
    group_indian,
)


@pytest.mark.parametrize(
    "expression, expected",
    [
        ("2 + 3 * 4", 14),
        ("(2 + 3) * 4", 20),
        ("2^10", 1024),
        ("10 / 4", 2.5),
        ("-7 % 3", -1),
        ("sqrt(16)", 4),
        ("log(1000)", 3),
        ("round(2.5)", 3),
        ("floor(-1.5)", -2),
        ("max(3, 9, 4)", 9),
        ("pow(2, 3) + abs(-2)", 10),
    ],
)
def test_evaluate(expression, expected):
    assert evaluate(expression) == expected


def test_whole_results_come_back_as_int():
    assert isinstance(evaluate("6 / 3"), int)
    assert isinstance(evaluate("7 / 2"), float)


def test_constants_and_variables():
    assert evaluate("PI") == pytest.approx(math.pi)
    assert evaluate("x * y + E", {"x": 5, "y": 10}) == pytest.approx(50 + math.e)


def test_premium_style_calculation():
    # 1 crore cover, 20 years, 12,000 a year
    assert evaluate("12000 * 20") == 240000
    assert evaluate("10000000 / (12000 * 20)") == pytest.approx(41.6666666667)


@pytest.mark.parametrize(
    "expression, message",
    [
        ("", "Expression cannot be empty"),
        ("   ", "Expression cannot be empty"),
        ("2 +", "Invalid mathematical expression"),
        ("foo + 1", "Unknown identifier 'foo'"),
        ("__import__('os')", "Unsupported function in expression"),
        ("1 / 0", "Result is not a finite number"),
        ("sqrt(-1)", "Result is not a finite number"),
        ("10 ^ 400", "Result is not a finite number"),
        ("'a' + 'b'", "Invalid characters in expression"),
        ("[1, 2]", "Invalid mathematical expression"),
    ],
)
def test_rejected_expressions(expression, message):
    with pytest.raises(CalculationError) as excinfo:
        evaluate(expression)
    assert str(excinfo.value) == message


@pytest.mark.parametrize(
    "digits, expected",
    [("1", "1"), ("999", "999"), ("1000", "1,000"), ("100000", "1,00,000"), ("12345678", "1,23,45,678")],
)
def test_group_indian(digits, expected):
    assert group_indian(digits) == expected


@pytest.mark.parametrize(
    "value, expected",
    [
        (1234567, "12,34,567"),
        (-1000, "-1,000"),
        (1234567.5, "12,34,567.5"),
        (12.3456789, "12.345679"),
        (0.0000001, "0"),
    ],
)
def test_format_number(value, expected):
    assert format_number(value) == expected
