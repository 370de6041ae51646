"""
SIGNAL GATE — Signal Combiner
Merges the action zone reading and the RSI divergence reading into one
BUY/SELL/HOLD decision with a confidence score.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from signal_gate.config.settings import HubSettings, OscillatorSettings
from signal_gate.data.models import (
    ActionZoneResult, IndicatorSignal, RSIDivergenceResult, SignalSource, SignalType,
    TrendDirection,
)
from signal_gate.utils.errors import ValidationError
from signal_gate.utils.helpers import clamp, safe_divide

Vote = Tuple[SignalSource, int, float, float]  # source, direction (+1/-1), score, weight


class SignalCombiner:
    """
    Combination formula:

        zone vote       = +1 when the zone is on the buy side and the trend is
                          not BEARISH (-1 symmetric); score = zone strength,
                          plus fresh_signal_bonus on a fresh transition
        divergence vote = +1 on bullish divergence (-1 on bearish);
                          score = the matching alert

        agreement:      strength = sum(w * score) / sum(w) over the votes,
                        side taken only if strength >= min_action_strength
        disagreement:   HOLD, strength = |sum(d * w * score)| / sum(w)
                                         * disagreement_penalty
        no votes:       HOLD, strength 0
    """

    def __init__(
        self,
        zone_weight: float = 0.6,
        divergence_weight: float = 0.4,
        fresh_signal_bonus: float = 15.0,
        min_action_strength: float = 25.0,
        disagreement_penalty: float = 0.5,
        overbought: float = 70.0,
        oversold: float = 30.0,
    ):
        if zone_weight < 0 or divergence_weight < 0 or zone_weight + divergence_weight <= 0:
            raise ValidationError(
                f"weights must be non-negative and not both zero, got "
                f"zone={zone_weight} divergence={divergence_weight}",
                "zone_weight", zone_weight,
            )
        if not 0 <= disagreement_penalty <= 1:
            raise ValidationError("disagreement_penalty must be within [0, 1]",
                                  "disagreement_penalty", disagreement_penalty)
        if not 0 <= min_action_strength <= 100:
            raise ValidationError("min_action_strength must be within [0, 100]",
                                  "min_action_strength", min_action_strength)
        self.zone_weight = zone_weight
        self.divergence_weight = divergence_weight
        self.fresh_signal_bonus = fresh_signal_bonus
        self.min_action_strength = min_action_strength
        self.disagreement_penalty = disagreement_penalty
        self.overbought = overbought
        self.oversold = oversold

    @classmethod
    def from_settings(cls, hub: HubSettings, oscillator: OscillatorSettings) -> "SignalCombiner":
        return cls(
            zone_weight=hub.zone_weight,
            divergence_weight=hub.divergence_weight,
            fresh_signal_bonus=hub.fresh_signal_bonus,
            min_action_strength=hub.min_action_strength,
            disagreement_penalty=hub.disagreement_penalty,
            overbought=oscillator.overbought,
            oversold=oscillator.oversold,
        )

    def combine(
        self,
        symbol: str,
        action_zone: ActionZoneResult,
        rsi: Optional[RSIDivergenceResult],
        price: Optional[float] = None,
        timestamp: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> IndicatorSignal:
        reasons: List[str] = [f"zone={action_zone.zone.value}", f"trend={action_zone.trend.value}"]
        votes: List[Vote] = []

        zone_vote = self._zone_vote(action_zone, reasons)
        if zone_vote is not None:
            votes.append(zone_vote)
        div_vote = self._divergence_vote(rsi, reasons)
        if div_vote is not None:
            votes.append(div_vote)

        signal_type = SignalType.HOLD
        source = SignalSource.COMBINED
        strength = 0.0
        total_weight = sum(v[3] for v in votes)
        directions = {v[1] for v in votes}

        if not votes:
            reasons.append("no directional evidence")
        elif len(directions) == 1:
            direction = directions.pop()
            strength = safe_divide(sum(v[3] * v[2] for v in votes), total_weight)
            if len(votes) == 1:
                source = votes[0][0]
            if strength >= self.min_action_strength:
                signal_type = SignalType.BUY if direction > 0 else SignalType.SELL
            else:
                reasons.append(
                    f"strength {strength:.1f} below action threshold {self.min_action_strength:.0f}"
                )
        else:
            net = safe_divide(sum(v[1] * v[3] * v[2] for v in votes), total_weight)
            strength = abs(net) * self.disagreement_penalty
            reasons.append("zone and divergence disagree")

        if signal_type is SignalType.HOLD:
            message = f"HOLD - no clear signal for {symbol}"
        else:
            message = f"{signal_type.value} signal for {symbol}"

        return IndicatorSignal(
            type=signal_type,
            strength=round(clamp(strength), 2),
            source=source,
            message=message,
            reasons=reasons,
            price=price,
            timestamp=timestamp,
            metadata=dict(metadata or {}),
        )

    def _zone_vote(self, az: ActionZoneResult, reasons: List[str]) -> Optional[Vote]:
        if self.zone_weight == 0:
            return None
        if az.zone.is_buy_side and az.trend is not TrendDirection.BEARISH:
            direction = 1
        elif az.zone.is_sell_side and az.trend is not TrendDirection.BULLISH:
            direction = -1
        else:
            return None
        score = az.strength
        if az.is_buy_signal:
            score += self.fresh_signal_bonus
            reasons.append("fresh buy transition")
        elif az.is_sell_signal:
            score += self.fresh_signal_bonus
            reasons.append("fresh sell transition")
        return SignalSource.ACTION_ZONE, direction, clamp(score), self.zone_weight

    def _divergence_vote(self, rsi: Optional[RSIDivergenceResult], reasons: List[str]) -> Optional[Vote]:
        if rsi is None or rsi.is_warmup:
            return None
        vote = None
        if rsi.bullish_divergence:
            reasons.append(f"bullish divergence detected (alert {rsi.bullish_divergence_alert:.0f})")
            vote = (SignalSource.RSI_DIVERGENCE, 1, rsi.bullish_divergence_alert, self.divergence_weight)
        elif rsi.bearish_divergence:
            reasons.append(f"bearish divergence detected (alert {rsi.bearish_divergence_alert:.0f})")
            vote = (SignalSource.RSI_DIVERGENCE, -1, rsi.bearish_divergence_alert, self.divergence_weight)

        if rsi.rsi >= self.overbought:
            reasons.append(f"rsi overbought ({rsi.rsi:.1f})")
        elif rsi.rsi <= self.oversold:
            reasons.append(f"rsi oversold ({rsi.rsi:.1f})")

        if vote is not None and self.divergence_weight == 0:
            return None
        return vote
