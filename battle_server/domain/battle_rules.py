"""Battle and duet money rules that are independent from HTTP and DB.

Rule of thumb:
- OK: arithmetic, validation, rounding.
- Not OK: touching DB sessions, Redis, FastAPI, datetime.now(), etc.

All SoftPoints amounts are Decimals rounded to cents (ROUND_HALF_UP).
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import List, Tuple

from battle_server.domain.errors import ValidationError
from battle_server.models.schema_models import PrizeDistributionSchema, TipSplitSchema

CENT = Decimal("0.01")

PRIZE_POT_MULTIPLIER = 20
VOTE_POINTS = 10
PLATFORM_FEE_PERCENTAGE = Decimal("5")

MIN_DURATION_SECONDS = 60
MAX_DURATION_SECONDS = 600
MAX_ENTRY_FEE = Decimal("1000")

# Percent of the prize pot.
WINNER_PERCENTAGE = Decimal("60")
RUNNER_UP_PERCENTAGE = Decimal("30")
TIE_PERCENTAGE = Decimal("45")


def round_points(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, percentage: Decimal) -> Decimal:
    return round_points(Decimal(amount) * Decimal(percentage) / Decimal(100))


def validate_battle_settings(duration: int, entry_fee: Decimal) -> None:
    if duration < MIN_DURATION_SECONDS or duration > MAX_DURATION_SECONDS:
        raise ValidationError(
            f"duration must be between {MIN_DURATION_SECONDS} and {MAX_DURATION_SECONDS} seconds",
            "invalid_config",
        )
    if entry_fee < 0 or entry_fee > MAX_ENTRY_FEE:
        raise ValidationError(
            f"entry_fee must be between 0 and {MAX_ENTRY_FEE}", "invalid_config"
        )
    if entry_fee != round_points(entry_fee):
        raise ValidationError("entry_fee must be in whole cents", "invalid_config")


def score_percentage(score: int, score1: int, score2: int) -> float:
    """Share of the combined score held by ``score``.

    Defined as 50 when nobody has scored yet so the progress bar starts even.
    """
    total = score1 + score2
    if total == 0:
        return 50.0
    return score / total * 100


class PrizePoolCalculator:
    """Derives the prize pot from the entry fee and splits it at battle end."""

    def __init__(self, multiplier: int = PRIZE_POT_MULTIPLIER):
        self.multiplier = multiplier

    def prize_pot(self, entry_fee: Decimal) -> Decimal:
        return round_points(Decimal(entry_fee) * self.multiplier)

    def distribute(
        self,
        prize_pot: Decimal,
        first_id: str,
        first_score: int,
        second_id: str,
        second_score: int,
    ) -> PrizeDistributionSchema:
        """Split the pot 60/30/10, or 45/45/10 on an exact tie.

        The viewer pool takes the rounding remainder so the three shares always
        add up to ``prize_pot``.
        """
        if first_score == second_score:
            each = percent_of(prize_pot, TIE_PERCENTAGE)
            return PrizeDistributionSchema(
                prize_pot=prize_pot,
                winner_share=each,
                runner_up_share=each,
                viewer_pool_share=prize_pot - each - each,
                is_tie=True,
            )

        if first_score > second_score:
            winner_id, runner_up_id = first_id, second_id
        else:
            winner_id, runner_up_id = second_id, first_id
        winner_share = percent_of(prize_pot, WINNER_PERCENTAGE)
        runner_up_share = percent_of(prize_pot, RUNNER_UP_PERCENTAGE)
        return PrizeDistributionSchema(
            prize_pot=prize_pot,
            winner_share=winner_share,
            runner_up_share=runner_up_share,
            viewer_pool_share=prize_pot - winner_share - runner_up_share,
            winner_id=winner_id,
            runner_up_id=runner_up_id,
        )

    def refund(self, entry_fee: Decimal, first_id: str, second_id: str) -> PrizeDistributionSchema:
        """Aborted battles pay no prize; both creators get their entry fee back."""
        fee = round_points(entry_fee)
        return PrizeDistributionSchema(
            prize_pot=Decimal("0.00"),
            winner_share=Decimal("0.00"),
            runner_up_share=Decimal("0.00"),
            viewer_pool_share=Decimal("0.00"),
            refunds={first_id: fee, second_id: fee},
        )


class DuetRevenueSplitter:
    """Splits a tip between the platform, the original creator and the duet creator."""

    def __init__(self, platform_fee_percentage: Decimal = PLATFORM_FEE_PERCENTAGE):
        self.platform_fee_percentage = Decimal(platform_fee_percentage)

    def compute_split(self, tip_amount: Decimal, revenue_share_percentage: Decimal = Decimal("100")) -> TipSplitSchema:
        """Compute the three shares of a tip.

        Args:
            tip_amount (Decimal): Tip in SoftPoints, must be positive
            revenue_share_percentage (Decimal): Percent of the post-fee amount owed
                to the original creator. Direct tips use 100.

        Returns:
            TipSplitSchema: platform fee, original creator share and duet creator
                share. The duet creator absorbs the rounding remainder.
        """
        tip_amount = Decimal(tip_amount)
        revenue_share_percentage = Decimal(revenue_share_percentage)
        if tip_amount <= 0:
            raise ValidationError("Tip amount must be positive.", "invalid_amount")
        if tip_amount != round_points(tip_amount):
            raise ValidationError("Tip amount must be in whole cents.", "invalid_amount")
        if revenue_share_percentage < 0 or revenue_share_percentage > 100:
            raise ValidationError(
                "revenue_share_percentage must be between 0 and 100", "invalid_share"
            )

        platform_fee = percent_of(tip_amount, self.platform_fee_percentage)
        remaining = tip_amount - platform_fee
        original_creator_share = percent_of(remaining, revenue_share_percentage)
        duet_creator_share = remaining - original_creator_share
        return TipSplitSchema(
            platform_fee=platform_fee,
            original_creator_share=original_creator_share,
            duet_creator_share=duet_creator_share,
        )


def payout_credits(
    distribution: PrizeDistributionSchema,
    creator1_id: str,
    creator2_id: str,
    platform_account_id: str,
) -> List[Tuple[str, Decimal, str]]:
    """Wallet credits for a finished battle as (recipient_id, amount, role).

    The viewer pool goes to the platform account, which pays viewers out
    separately. Zero amounts are left out.
    """
    if distribution.refunds:
        credits = [
            (creator_id, amount, "entry_refund")
            for creator_id, amount in distribution.refunds.items()
        ]
    elif distribution.is_tie:
        credits = [
            (creator1_id, distribution.winner_share, "prize_tie"),
            (creator2_id, distribution.runner_up_share, "prize_tie"),
            (platform_account_id, distribution.viewer_pool_share, "viewer_pool"),
        ]
    else:
        credits = [
            (distribution.winner_id, distribution.winner_share, "prize_winner"),
            (distribution.runner_up_id, distribution.runner_up_share, "prize_runner_up"),
            (platform_account_id, distribution.viewer_pool_share, "viewer_pool"),
        ]
    return [credit for credit in credits if credit[1] > 0]
