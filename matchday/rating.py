import math
from typing import Tuple

DEFAULT_K_FACTOR = 24


def expected_score(player_rating: int, opponent_rating: int) -> float:
    """Logistic expected score of `player_rating` against `opponent_rating`."""
    return 1 / (1 + math.pow(10, (opponent_rating - player_rating) / 400))


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def calculate_new_rating(
    player_rating: int,
    opponent_rating: int,
    did_win: bool,
    k_factor: int = DEFAULT_K_FACTOR
) -> int:
    """
    Rating after one decisive result.

    Args:
        player_rating: Current rating of the player being updated
        opponent_rating: Rating of the opponent (or opposing side average)
        did_win: True for a win, False for a loss
        k_factor: Maximum swing for a single result

    Returns:
        New integer rating, rounded half away from zero
    """
    actual = 1.0 if did_win else 0.0
    expected = expected_score(player_rating, opponent_rating)
    return _round_half_away(player_rating + k_factor * (actual - expected))


class EloCalculator:
    """
    Elo rating system for match results.
    K-factor of 24 by default, matching the club rating rules.
    """

    def __init__(self, k_factor: int = DEFAULT_K_FACTOR):
        self.k_factor = k_factor

    def calculate_win_probability(self, rating_a: int, rating_b: int) -> Tuple[float, float]:
        """
        Returns:
            (prob_a_wins, prob_b_wins) as floats between 0 and 1
        """
        expected_a = expected_score(rating_a, rating_b)
        return (expected_a, 1 - expected_a)

    def calculate_new_rating(self, player_rating: int, opponent_rating: int, did_win: bool) -> int:
        return calculate_new_rating(player_rating, opponent_rating, did_win, self.k_factor)

    def rating_change(self, player_rating: int, opponent_rating: int, did_win: bool) -> int:
        """Signed rating delta without applying it."""
        return self.calculate_new_rating(player_rating, opponent_rating, did_win) - player_rating

    def calculate_draw_rating(self, player_rating: int, opponent_rating: int) -> int:
        """
        Rating after a draw.
        In a draw, both sides score 0.5.
        """
        expected = expected_score(player_rating, opponent_rating)
        return _round_half_away(player_rating + self.k_factor * (0.5 - expected))
