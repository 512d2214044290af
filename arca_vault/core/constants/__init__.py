ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Fixed-point scales
Q96 = 1 << 96
Q128 = 1 << 128
Q192 = 1 << 192
TICK_BASE = "1.0001"

# ERC-20 decimals we accept (6-decimal stables up to 24-decimal tokens)
MAX_TOKEN_DECIMALS = 24

BPS_DENOMINATOR = 10_000
# Weight distributions passed to strategy rebalance must sum to this per side
DISTRIBUTION_TOTAL_BPS = 10_000
# Oracle deviation thresholds are 1e18-scaled (1e18 = 100%)
DEVIATION_SCALE = 10**18

# Caller-side price handling
PRICE_CACHE_TTL_S = 30
PRICE_STALE_AFTER_MS = 60_000

# Rebalance defaults
DEFAULT_RESERVE_PERCENT = 10
DEFAULT_TICK_RANGE_WIDTH_PERCENT = 5
DEFAULT_BIN_RANGE_COUNT = 51
DEFAULT_TICK_SLIPPAGE = 100
DEFAULT_BIN_SLIPPAGE = 10

DAYS_PER_YEAR = 365

STABLECOIN_SYMBOLS = frozenset({"USDC", "USDC.E", "USDT", "DAI"})
