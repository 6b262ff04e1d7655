"""Unit tests for transaction id generation"""

import random
import re
from datetime import datetime

from fee_ledger.utils.ids import TransactionIdGenerator

TXN_PATTERN = re.compile(r"^TXN-(\d+)-([0-9A-Z]{6})$")


def test_id_format_uses_epoch_millis():
    moment = datetime(2025, 6, 15, 10, 0, 0, 123000)
    generate = TransactionIdGenerator(clock=lambda: moment, rng=random.Random(1))

    match = TXN_PATTERN.match(generate())

    assert match is not None
    assert int(match.group(1)) == 1749981600123


def test_seeded_generator_is_deterministic():
    moment = datetime(2025, 6, 15)
    first = TransactionIdGenerator(clock=lambda: moment, rng=random.Random(7))
    second = TransactionIdGenerator(clock=lambda: moment, rng=random.Random(7))

    assert [first() for _ in range(5)] == [second() for _ in range(5)]


def test_suffix_varies_within_same_millisecond():
    moment = datetime(2025, 6, 15)
    generate = TransactionIdGenerator(clock=lambda: moment, rng=random.Random(3))

    ids = {generate() for _ in range(100)}

    assert len(ids) == 100
    assert all(TXN_PATTERN.match(i) for i in ids)
