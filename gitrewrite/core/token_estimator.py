"""Token count estimation for model requests."""

from abc import ABC, abstractmethod


class TokenEstimator(ABC):
    """Estimates how many tokens a piece of text costs."""

    @abstractmethod
    def estimate(self, text: str) -> int:
        """Return the estimated token count of ``text``."""


class HeuristicTokenEstimator(TokenEstimator):
    """Roughly four bytes per token; varies by tokenizer."""

    def __init__(self, bytes_per_token: int = 4):
        if bytes_per_token <= 0:
            raise ValueError("bytes_per_token must be positive")
        self.bytes_per_token = bytes_per_token

    def estimate(self, text: str) -> int:
        return len(text.encode("utf-8")) // self.bytes_per_token
