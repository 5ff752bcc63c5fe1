import re
from collections import Counter

from app.services.pin_generator import PIN_MAX, PIN_MIN, PinGenerator


def test_generated_pins_are_six_digits_without_leading_zero():
    generator = PinGenerator()
    for _ in range(2000):
        pin = generator.generate()
        assert re.fullmatch(r"[1-9]\d{5}", pin)
        assert PIN_MIN <= int(pin) <= PIN_MAX


def test_range_bounds_are_reachable():
    assert PinGenerator(randbelow=lambda n: 0).generate() == "100000"
    assert PinGenerator(randbelow=lambda n: n - 1).generate() == "999999"


def test_random_source_covers_the_whole_range():
    seen = []
    PinGenerator(randbelow=lambda n: seen.append(n) or 0).generate()
    assert seen == [900000]


def test_leading_digit_is_roughly_uniform():
    generator = PinGenerator()
    counts = Counter(generator.generate()[0] for _ in range(9000))
    assert set(counts) == set("123456789")
    # each leading digit should get about 1/9 of the draws
    assert all(600 < count < 1400 for count in counts.values())
