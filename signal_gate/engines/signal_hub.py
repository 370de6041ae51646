"""
SIGNAL GATE — Signal Hub
Per-symbol reactive state: candle buffers, recomputation of the action zone
and RSI divergence readings, the combined signal, data quality grading,
subscriber fan-out and optional periodic refresh.

Each symbol owns its slot and lock. There is no cross-symbol lock, so
different symbols update concurrently; for one symbol at most one recompute
is in flight and requests arriving meanwhile are coalesced (latest wins).
"""
import math
import time
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import pydantic

from signal_gate.config.settings import HubSettings
from signal_gate.data.models import (
    ActionZoneResult, DataQuality, IndicatorSignal, MarketCandle, RSIDivergenceResult,
    candles_to_frame,
)
from signal_gate.engines.realtime import RefreshTimer, SubscriberList, Subscription
from signal_gate.engines.signal_combiner import SignalCombiner
from signal_gate.indicators.action_zone import ZoneClassifier
from signal_gate.indicators.divergence import DivergenceOscillator, ohlc4
from signal_gate.utils.errors import ComputationError, ValidationError, require_positive
from signal_gate.utils.helpers import normalize_symbol, pct_change, utc_now
from signal_gate.utils.logger import get_logger

logger = get_logger("signal_hub")

StateCallback = Callable[["IndicatorState"], None]


def _is_aware(ts: datetime) -> bool:
    return ts.tzinfo is not None and ts.utcoffset() is not None


class SymbolStatus(str, Enum):
    IDLE = "IDLE"
    ANALYZING = "ANALYZING"
    READY = "READY"
    ERROR = "ERROR"


@dataclass
class IndicatorState:
    """Snapshot of everything the hub knows about one symbol."""
    symbol: str
    action_zone: Optional[ActionZoneResult] = None
    rsi_divergence: Optional[RSIDivergenceResult] = None
    combined_signal: Optional[IndicatorSignal] = None
    last_update: Optional[datetime] = None
    is_analyzing: bool = False
    error: Optional[str] = None
    data_quality: DataQuality = DataQuality.POOR
    status: SymbolStatus = SymbolStatus.IDLE
    candle_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def snapshot(self) -> "IndicatorState":
        return replace(self, metadata=dict(self.metadata))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "action_zone": self.action_zone.model_dump(mode="json") if self.action_zone else None,
            "rsi_divergence": self.rsi_divergence.model_dump(mode="json") if self.rsi_divergence else None,
            "combined_signal": self.combined_signal.model_dump(mode="json") if self.combined_signal else None,
            "last_update": self.last_update.isoformat() if self.last_update else None,
            "is_analyzing": self.is_analyzing,
            "error": self.error,
            "data_quality": self.data_quality.value,
            "status": self.status.value,
            "candle_count": self.candle_count,
            "metadata": dict(self.metadata),
        }


@dataclass
class _Request:
    error: Optional[str] = None


class _SymbolSlot:
    """Mutable per-symbol resources. Guarded by its own lock."""

    def __init__(self, symbol: str):
        self.symbol = symbol
        self.lock = threading.Lock()
        self.candles: List[MarketCandle] = []
        self.state = IndicatorState(symbol=symbol)
        self.subscribers = SubscriberList(symbol)
        self.timer: Optional[RefreshTimer] = None
        self.interval: Optional[float] = None
        self.last_data_at: Optional[float] = None
        self.pending: Optional[_Request] = None
        self.busy = False
        self.coalesced = 0


class SignalHub:
    """
    Reactive per-symbol indicator engine.

    update_market_data() merges a candle batch into the symbol buffer and
    recomputes synchronously in the caller's thread; subscribers are notified
    after the computation completes, in registration order. Bad market data
    never raises: it lands in state.error with status ERROR.
    """

    def __init__(
        self,
        zone_classifier: ZoneClassifier,
        oscillator: DivergenceOscillator,
        settings: Optional[HubSettings] = None,
        combiner: Optional[SignalCombiner] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or HubSettings()
        require_positive("max_candles", self.settings.max_candles)
        require_positive("default_interval_seconds", self.settings.default_interval_seconds)
        require_positive("stale_factor", self.settings.stale_factor)
        require_positive("max_workers", self.settings.max_workers)
        self.zone_classifier = zone_classifier
        self.oscillator = oscillator
        self.combiner = combiner or SignalCombiner(
            zone_weight=self.settings.zone_weight,
            divergence_weight=self.settings.divergence_weight,
            fresh_signal_bonus=self.settings.fresh_signal_bonus,
            min_action_strength=self.settings.min_action_strength,
            disagreement_penalty=self.settings.disagreement_penalty,
            overbought=oscillator.overbought,
            oversold=oscillator.oversold,
        )
        self._clock = clock
        self._slots: Dict[str, _SymbolSlot] = {}
        self._lock = threading.RLock()
        self._stats_lock = threading.Lock()
        self.stats = {"updates": 0, "rejected": 0, "errors": 0, "coalesced": 0, "notifications": 0}

        if self.settings.max_candles < zone_classifier.warmup:
            logger.warning("max_candles_below_warmup", max_candles=self.settings.max_candles,
                           warmup=zone_classifier.warmup)

    # ─── Market data ──────────────────────────────────────────

    def update_market_data(self, symbol: str, candles: Sequence[Any]) -> IndicatorState:
        """Merge a candle batch for symbol and recompute. Returns the resulting snapshot."""
        key = self._key(symbol)
        slot = self._get_or_create(key)
        batch, error = self._validate_batch(key, candles)
        if error is None:
            with slot.lock:
                error = self._check_continuity(slot.candles, batch)
                if error is None:
                    slot.candles = self._merge(slot.candles, batch)
                    slot.last_data_at = self._clock()
        if error is not None:
            logger.warning("market_data_rejected", symbol=key, reason=error)
            self._count("rejected")
            self._submit(slot, _Request(error=error))
        else:
            self._submit(slot, _Request())
        return self._snapshot(slot)

    def update_many(self, batches: Mapping[str, Sequence[Any]]) -> Dict[str, IndicatorState]:
        """Update several symbols in parallel, one worker per symbol."""
        if not batches:
            return {}
        workers = min(self.settings.max_workers, len(batches))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="signal-hub") as pool:
            futures = {
                symbol: pool.submit(self.update_market_data, symbol, candles)
                for symbol, candles in batches.items()
            }
            return {self._key(symbol): future.result() for symbol, future in futures.items()}

    def refresh(self, symbol: str) -> bool:
        """Recompute against the stored buffer. Used by the refresh timer."""
        key = self._key(symbol)
        with self._lock:
            slot = self._slots.get(key)
        if slot is None:
            return False
        with slot.lock:
            has_data = bool(slot.candles)
        if not has_data:
            logger.debug("refresh_skipped_no_data", symbol=key)
            return False
        self._submit(slot, _Request())
        return True

    # ─── Subscriptions ────────────────────────────────────────

    def subscribe(self, symbol: str, callback: StateCallback) -> Subscription:
        if not callable(callback):
            raise ValidationError("callback must be callable", "callback")
        key = self._key(symbol)
        with self._lock:
            existed = key in self._slots
            slot = self._get_or_create(key)
            subscription = slot.subscribers.add(callback, on_removed=self._release_if_unused)
        logger.debug("subscribed", symbol=key, subscribers=len(slot.subscribers))
        if existed:
            try:
                callback(self._snapshot(slot))
            except Exception as e:
                logger.error("subscriber_callback_error", topic=key, error=str(e))
        return subscription

    # ─── Real-time refresh ────────────────────────────────────

    def start_real_time_updates(self, symbol: str, interval_seconds: Optional[float] = None) -> None:
        interval = self.settings.default_interval_seconds if interval_seconds is None else interval_seconds
        require_positive("interval_seconds", interval)
        key = self._key(symbol)
        slot = self._get_or_create(key)
        timer = RefreshTimer(interval, lambda: self.refresh(key), name=f"refresh-{key}")
        with slot.lock:
            previous = slot.timer
            slot.timer = timer
            slot.interval = interval
        if previous is not None:
            previous.cancel()
        timer.start()
        logger.info("real_time_updates_started", symbol=key, interval_seconds=interval)

    def stop_real_time_updates(self, symbol: str) -> bool:
        key = self._key(symbol)
        with self._lock:
            slot = self._slots.get(key)
        if slot is None:
            return False
        with slot.lock:
            timer = slot.timer
            slot.timer = None
            slot.interval = None
        if timer is None:
            return False
        timer.cancel()
        logger.info("real_time_updates_stopped", symbol=key, ticks=timer.ticks)
        self._release_if_unused(key)
        return True

    # ─── Queries ──────────────────────────────────────────────

    def get_state(self, symbol: str) -> Optional[IndicatorState]:
        with self._lock:
            slot = self._slots.get(self._key(symbol))
        return self._snapshot(slot) if slot is not None else None

    def get_trading_signal(self, symbol: str) -> Optional[IndicatorSignal]:
        state = self.get_state(symbol)
        return state.combined_signal if state is not None else None

    def get_candles(self, symbol: str) -> List[MarketCandle]:
        with self._lock:
            slot = self._slots.get(self._key(symbol))
        if slot is None:
            return []
        with slot.lock:
            return list(slot.candles)

    @property
    def symbols(self) -> List[str]:
        with self._lock:
            return sorted(self._slots)

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            slots = list(self._slots.values())
        with self._stats_lock:
            counters = dict(self.stats)
        return {
            **counters,
            "symbols": len(slots),
            "active_timers": sum(1 for s in slots if s.timer is not None),
            "subscribers": sum(len(s.subscribers) for s in slots),
        }

    # ─── Lifecycle ────────────────────────────────────────────

    def reset_indicators(self, symbol: str) -> bool:
        """Reset a symbol's state to its initial value and notify subscribers. Keeps the buffer."""
        key = self._key(symbol)
        with self._lock:
            slot = self._slots.get(key)
        if slot is None:
            return False
        with slot.lock:
            slot.state = IndicatorState(symbol=key)
            snapshot = slot.state.snapshot()
        self._publish(slot, snapshot)
        return True

    def cleanup(self, symbol: str) -> bool:
        """Stop the timer and drop buffer, state and subscribers of a symbol."""
        key = self._key(symbol)
        with self._lock:
            slot = self._slots.pop(key, None)
        if slot is None:
            return False
        with slot.lock:
            timer = slot.timer
            slot.timer = None
            slot.candles = []
        if timer is not None:
            timer.cancel()
        slot.subscribers.clear()
        logger.info("symbol_cleaned_up", symbol=key)
        return True

    def shutdown(self) -> None:
        with self._lock:
            slots = list(self._slots.values())
        for slot in slots:
            with slot.lock:
                timer = slot.timer
                slot.timer = None
                slot.interval = None
            if timer is not None:
                timer.cancel()
        logger.info("signal_hub_shutdown", symbols=len(slots))

    # ─── Data quality ─────────────────────────────────────────

    def assess_data_quality(self, candle_count: int, data_age: Optional[float] = None,
                            interval: Optional[float] = None) -> DataQuality:
        """
        POOR when history is below warm-up, the oscillator is still warming
        up, or refreshes have run on stale data for stale_factor intervals.
        Freshness is only judged when a refresh interval is configured.
        """
        warmup = self.zone_classifier.warmup
        if candle_count < warmup or candle_count <= self.oscillator.warmup:
            return DataQuality.POOR
        judged = interval is not None and data_age is not None
        if judged and data_age > self.settings.stale_factor * interval:
            return DataQuality.POOR
        fresh = not judged or data_age <= interval
        if (fresh and candle_count >= self.settings.excellent_history_factor * warmup
                and candle_count >= self.oscillator.full_warmup):
            return DataQuality.EXCELLENT
        if fresh and candle_count >= self.settings.good_history_factor * warmup:
            return DataQuality.GOOD
        return DataQuality.FAIR

    # ─── Internals ────────────────────────────────────────────

    def _count(self, name: str, amount: int = 1) -> None:
        with self._stats_lock:
            self.stats[name] += amount

    @staticmethod
    def _key(symbol: str) -> str:
        if not isinstance(symbol, str) or not symbol.strip():
            raise ValidationError("symbol must be a non-empty string", "symbol", symbol)
        return normalize_symbol(symbol)

    def _get_or_create(self, key: str) -> _SymbolSlot:
        with self._lock:
            slot = self._slots.get(key)
            if slot is None:
                slot = _SymbolSlot(key)
                self._slots[key] = slot
            return slot

    def _release_if_unused(self, key: str) -> None:
        with self._lock:
            slot = self._slots.get(key)
            if slot is None or len(slot.subscribers) > 0 or slot.timer is not None:
                return
            del self._slots[key]
        logger.debug("symbol_released", symbol=key)

    def _validate_batch(self, key: str, candles: Sequence[Any]):
        if not candles:
            return None, "No market data available"
        batch: List[MarketCandle] = []
        for item in candles:
            if isinstance(item, Mapping):
                try:
                    item = MarketCandle.model_validate(item)
                except pydantic.ValidationError as e:
                    return None, f"Malformed candle: {e.errors()[0]['msg']}"
            if not isinstance(item, MarketCandle):
                return None, f"Malformed candle of type {type(item).__name__}"
            if normalize_symbol(item.symbol) != key:
                return None, f"Candle symbol {item.symbol} does not match {key}"
            if not all(math.isfinite(v) for v in (item.open, item.high, item.low, item.close)):
                return None, f"Non-finite price in candle at {item.timestamp.isoformat()}"
            batch.append(item)
        try:
            ordered = all(a.timestamp < b.timestamp for a, b in zip(batch, batch[1:]))
        except TypeError:
            return None, "Candle timestamps mix naive and timezone-aware values"
        if not ordered:
            return None, "Candles must be in strictly ascending timestamp order"
        return batch, None

    @staticmethod
    def _check_continuity(existing: List[MarketCandle], batch: List[MarketCandle]) -> Optional[str]:
        if existing and _is_aware(existing[-1].timestamp) != _is_aware(batch[0].timestamp):
            return "Candle timestamps mix naive and timezone-aware values"
        return None

    def _merge(self, existing: List[MarketCandle], batch: List[MarketCandle]) -> List[MarketCandle]:
        by_ts = {c.timestamp: c for c in existing}
        for candle in batch:
            by_ts[candle.timestamp] = candle
        merged = sorted(by_ts.values(), key=lambda c: c.timestamp)
        return merged[-self.settings.max_candles:]

    def _submit(self, slot: _SymbolSlot, request: _Request) -> None:
        with slot.lock:
            if slot.pending is not None:
                slot.coalesced += 1
                self._count("coalesced")
            slot.pending = request
            if slot.busy:
                logger.debug("recompute_coalesced", symbol=slot.symbol)
                return
            slot.busy = True

        while True:
            with slot.lock:
                current = slot.pending
                slot.pending = None
                if current is None:
                    slot.busy = False
                    return
                slot.state.status = SymbolStatus.ANALYZING
                slot.state.is_analyzing = True
                candles = list(slot.candles)
                age = None if slot.last_data_at is None else self._clock() - slot.last_data_at
                interval = slot.interval
            snapshot = self._process(slot, current, candles, age, interval)
            self._publish(slot, snapshot)

    def _process(self, slot: _SymbolSlot, request: _Request, candles: List[MarketCandle],
                 age: Optional[float], interval: Optional[float]) -> IndicatorState:
        if request.error is not None:
            return self._apply_error(slot, request.error)
        try:
            result = self._analyze(slot.symbol, candles, age, interval)
        except Exception as e:
            logger.error("indicator_analysis_failed", symbol=slot.symbol, error=str(e))
            self._count("errors")
            return self._apply_error(slot, f"Analysis failed: {e}")

        with slot.lock:
            state = slot.state
            state.action_zone = result["action_zone"]
            state.rsi_divergence = result["rsi_divergence"]
            state.combined_signal = result["combined_signal"]
            state.data_quality = result["data_quality"]
            state.candle_count = len(candles)
            state.metadata = result["metadata"]
            state.error = None
            state.status = SymbolStatus.READY
            state.is_analyzing = False
            state.last_update = utc_now()
            self._count("updates")
            return state.snapshot()

    def _apply_error(self, slot: _SymbolSlot, message: str) -> IndicatorState:
        with slot.lock:
            state = slot.state
            state.error = message
            state.status = SymbolStatus.ERROR
            state.is_analyzing = False
            state.last_update = utc_now()
            return state.snapshot()

    def _analyze(self, symbol: str, candles: List[MarketCandle],
                 age: Optional[float], interval: Optional[float]) -> Dict[str, Any]:
        df = candles_to_frame(candles)
        zone_df = self.zone_classifier.compute(df)
        action_zone = self.zone_classifier.result_at(zone_df)

        series = self.oscillator.calculate(
            ohlc4(df["open"], df["high"], df["low"], df["close"]),
            df["high"], df["low"], df["close"],
        )
        rsi_result = series.latest()

        quality = self.assess_data_quality(len(candles), age, interval)
        if quality is DataQuality.POOR and len(candles) < self.zone_classifier.warmup:
            logger.debug("insufficient_history", symbol=symbol, candles=len(candles),
                         required=self.zone_classifier.warmup)

        last = candles[-1]
        atr_pct = float(zone_df["az_atr_pct"].iloc[-1])
        if not math.isfinite(atr_pct) or not math.isfinite(action_zone.strength):
            raise ComputationError(f"Non-finite indicator output for {symbol}", {"atr_pct": atr_pct})
        atr_pct = round(atr_pct, 6)
        change_pct = pct_change(candles[-2].close, last.close) if len(candles) > 1 else 0.0
        metadata = {"atr_pct": atr_pct, "change_pct": round(change_pct, 6), "candles": len(candles)}
        combined = self.combiner.combine(
            symbol, action_zone, rsi_result,
            price=last.close if last.close > 0 else None,
            timestamp=last.timestamp,
            metadata={"atr_pct": atr_pct, "data_quality": quality.value},
        )
        return {
            "action_zone": action_zone,
            "rsi_divergence": rsi_result,
            "combined_signal": combined,
            "data_quality": quality,
            "metadata": metadata,
        }

    def _publish(self, slot: _SymbolSlot, snapshot: IndicatorState) -> None:
        delivered = slot.subscribers.publish(snapshot)
        self._count("notifications", delivered)

    @staticmethod
    def _snapshot(slot: _SymbolSlot) -> IndicatorState:
        with slot.lock:
            return slot.state.snapshot()
