from .tenancy import Organization, Store
from .auth import User
from .shifts import Shift
from .lottery import (
    LotteryGame,
    LotteryBin,
    LotteryPack,
    LotteryPackBinHistory,
    LotteryShiftOpening,
    LotteryShiftClosing,
    LotteryVariance,
)
from .day_close import LotteryBusinessDay, LotteryDayCloseStaging
from .audit import AuditLogEntry

__all__ = [
    'Organization', 'Store',
    'User',
    'Shift',
    'LotteryGame', 'LotteryBin', 'LotteryPack', 'LotteryPackBinHistory',
    'LotteryShiftOpening', 'LotteryShiftClosing', 'LotteryVariance',
    'LotteryBusinessDay', 'LotteryDayCloseStaging',
    'AuditLogEntry',
]
