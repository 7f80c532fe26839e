import io
import random

import pytest

from fair_dice import CryptoProvider, Die, GameUI


class SeededCrypto(CryptoProvider):
    """Deterministic stand-in for CryptoProvider, backed by random.Random."""

    def __init__(self, seed: int = 0):
        self._random = random.Random(seed)

    def generate_key(self) -> bytes:
        return self._random.randbytes(self.KEY_SIZE)

    def generate_secure_random(self, max_val: int) -> int:
        return self._random.randrange(max_val)

    def choice(self, options):
        return self._random.choice(options)


class ScriptedCrypto(CryptoProvider):
    """Hands out pre-chosen secret values and always picks the first option."""

    def __init__(self, secrets):
        self._secrets = list(secrets)

    def generate_key(self) -> bytes:
        return bytes(range(self.KEY_SIZE))

    def generate_secure_random(self, max_val: int) -> int:
        return self._secrets.pop(0) % max_val

    def choice(self, options):
        return options[0]


class ScriptedInput:
    """Input collaborator replaying fixed replies; EOF once they run out."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.prompts = []

    def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.replies:
            raise EOFError
        return self.replies.pop(0)


@pytest.fixture
def cycle_dice():
    return [
        Die((2, 2, 4, 4, 9, 9)),
        Die((1, 1, 6, 6, 8, 8)),
        Die((3, 3, 5, 5, 7, 7)),
    ]


@pytest.fixture
def make_ui():
    def _make(replies):
        output = io.StringIO()
        return GameUI(input_func=ScriptedInput(replies), output=output), output
    return _make


@pytest.fixture
def seeded_crypto():
    return SeededCrypto(seed=1234)


@pytest.fixture
def scripted_crypto():
    return ScriptedCrypto
