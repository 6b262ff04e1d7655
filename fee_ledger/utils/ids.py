"""Receipt/transaction identifier generation"""

import random
import string
from datetime import datetime, timedelta
from typing import Callable, Optional

from fee_ledger.utils.date_utils import utcnow

BASE36_ALPHABET = string.digits + string.ascii_uppercase
SUFFIX_LENGTH = 6


class TransactionIdGenerator:
    """
    Produces ids of the form TXN-<epochMillis>-<6 base36 chars>.

    Clock and random source are injectable so tests get deterministic ids.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.clock = clock
        self.rng = rng or random.SystemRandom()

    def __call__(self) -> str:
        moment = self.clock()
        epoch = datetime(1970, 1, 1, tzinfo=moment.tzinfo)
        millis = (moment - epoch) // timedelta(milliseconds=1)
        suffix = "".join(self.rng.choice(BASE36_ALPHABET) for _ in range(SUFFIX_LENGTH))
        return f"TXN-{millis}-{suffix}"
