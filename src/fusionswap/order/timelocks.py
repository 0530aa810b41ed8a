"""Timelock schedule for source and destination escrows.

Offsets are seconds relative to the escrow's deployment timestamp. On chain the
schedule is a single uint256: stage i occupies bits [32*i, 32*i + 32) and the
deployment timestamp occupies the top 32 bits.
"""

from dataclasses import dataclass, fields, replace
from enum import Enum, IntEnum
from typing import Optional

UINT32_MAX = (1 << 32) - 1
DEPLOYED_AT_OFFSET = 224


class Side(str, Enum):
    """Escrow side."""
    SRC = "src"
    DST = "dst"


class TimeLockStage(IntEnum):
    """Stage index inside the packed timelock word."""
    SRC_WITHDRAWAL = 0
    SRC_PUBLIC_WITHDRAWAL = 1
    SRC_CANCELLATION = 2
    SRC_PUBLIC_CANCELLATION = 3
    DST_WITHDRAWAL = 4
    DST_PUBLIC_WITHDRAWAL = 5
    DST_CANCELLATION = 6


# Field name per stage, in packing order
_STAGE_FIELDS = {
    TimeLockStage.SRC_WITHDRAWAL: "src_withdrawal",
    TimeLockStage.SRC_PUBLIC_WITHDRAWAL: "src_public_withdrawal",
    TimeLockStage.SRC_CANCELLATION: "src_cancellation",
    TimeLockStage.SRC_PUBLIC_CANCELLATION: "src_public_cancellation",
    TimeLockStage.DST_WITHDRAWAL: "dst_withdrawal",
    TimeLockStage.DST_PUBLIC_WITHDRAWAL: "dst_public_withdrawal",
    TimeLockStage.DST_CANCELLATION: "dst_cancellation",
}

_SIDE_STAGES = {
    Side.SRC: (
        TimeLockStage.SRC_WITHDRAWAL,
        TimeLockStage.SRC_PUBLIC_WITHDRAWAL,
        TimeLockStage.SRC_CANCELLATION,
        TimeLockStage.SRC_PUBLIC_CANCELLATION,
    ),
    Side.DST: (
        TimeLockStage.DST_WITHDRAWAL,
        TimeLockStage.DST_PUBLIC_WITHDRAWAL,
        TimeLockStage.DST_CANCELLATION,
    ),
}


@dataclass(frozen=True)
class TimeLockSchedule:
    """Per-side withdrawal/cancellation offsets.

    Invariant: within a side, offsets never decrease in stage order
    (withdrawal <= public withdrawal <= cancellation <= public cancellation).
    """

    src_withdrawal: int
    src_public_withdrawal: int
    src_cancellation: int
    src_public_cancellation: int
    dst_withdrawal: int
    dst_public_withdrawal: int
    dst_cancellation: int
    deployed_at: int = 0

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError(f"{f.name} must be an integer, got {value!r}")
            if value < 0 or value > UINT32_MAX:
                raise ValueError(f"{f.name} out of uint32 range: {value}")

        for side, stages in _SIDE_STAGES.items():
            offsets = [getattr(self, _STAGE_FIELDS[s]) for s in stages]
            for earlier, later, stage in zip(offsets, offsets[1:], stages[1:]):
                if later < earlier:
                    raise ValueError(
                        f"{side.value} timelocks must be non-decreasing: "
                        f"{_STAGE_FIELDS[stage]}={later} < {earlier}"
                    )

    @classmethod
    def from_int(cls, value: int) -> "TimeLockSchedule":
        """Unpack the on-chain uint256 representation."""
        kwargs = {
            name: (value >> (32 * stage)) & UINT32_MAX
            for stage, name in _STAGE_FIELDS.items()
        }
        kwargs["deployed_at"] = (value >> DEPLOYED_AT_OFFSET) & UINT32_MAX
        return cls(**kwargs)

    def build(self) -> int:
        """Pack into the on-chain uint256 representation."""
        packed = self.deployed_at << DEPLOYED_AT_OFFSET
        for stage, name in _STAGE_FIELDS.items():
            packed |= getattr(self, name) << (32 * stage)
        return packed

    def with_deployed_at(self, deployed_at: int) -> "TimeLockSchedule":
        return replace(self, deployed_at=deployed_at)

    def offset(self, stage: TimeLockStage) -> int:
        return getattr(self, _STAGE_FIELDS[stage])

    def _absolute(self, stage: TimeLockStage) -> int:
        if not self.deployed_at:
            raise ValueError("Absolute timelock requested before deployment timestamp is known")
        return self.deployed_at + self.offset(stage)

    def boundaries(self, side: Side) -> dict[TimeLockStage, int]:
        """Absolute timestamps of every stage on ``side``."""
        return {stage: self._absolute(stage) for stage in _SIDE_STAGES[Side(side)]}

    def withdrawal_start(self, side: Side) -> int:
        side = Side(side)
        stage = TimeLockStage.SRC_WITHDRAWAL if side is Side.SRC else TimeLockStage.DST_WITHDRAWAL
        return self._absolute(stage)

    def public_withdrawal_start(self, side: Side) -> int:
        side = Side(side)
        stage = (
            TimeLockStage.SRC_PUBLIC_WITHDRAWAL if side is Side.SRC
            else TimeLockStage.DST_PUBLIC_WITHDRAWAL
        )
        return self._absolute(stage)

    def cancellation_start(self, side: Side) -> int:
        side = Side(side)
        stage = TimeLockStage.SRC_CANCELLATION if side is Side.SRC else TimeLockStage.DST_CANCELLATION
        return self._absolute(stage)

    def public_cancellation_start(self) -> int:
        """Source only: anyone may cancel from here."""
        return self._absolute(TimeLockStage.SRC_PUBLIC_CANCELLATION)

    def src_private_cancellation(self) -> int:
        """Absolute source private cancellation time.

        The destination factory uses it to bound the destination lock window.
        """
        return self._absolute(TimeLockStage.SRC_CANCELLATION)


def schedule_from_settings(offsets: dict[str, int], deployed_at: Optional[int] = None) -> TimeLockSchedule:
    """Build a schedule from a settings offset table."""
    schedule = TimeLockSchedule(**offsets)
    if deployed_at is not None:
        schedule = schedule.with_deployed_at(deployed_at)
    return schedule
