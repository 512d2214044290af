ERC20_READ_ABI = [
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "allowance",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "decimals",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
    {
        "type": "function",
        "name": "symbol",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
    },
]

VAULT_READ_ABI = [
    {
        "type": "function",
        "name": "getTokenX",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "type": "function",
        "name": "getTokenY",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "type": "function",
        "name": "getBalances",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "amountX", "type": "uint256"},
            {"name": "amountY", "type": "uint256"},
        ],
    },
    {
        "type": "function",
        "name": "totalSupply",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "decimals",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
    {
        "type": "function",
        "name": "getPricePerFullShare",
        "stateMutability": "view",
        "inputs": [{"name": "tokenIndex", "type": "uint8"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "getShares",
        "stateMutability": "view",
        "inputs": [
            {"name": "user", "type": "address"},
            {"name": "tokenIndex", "type": "uint8"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "getCurrentRound",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "getQueuedWithdrawal",
        "stateMutability": "view",
        "inputs": [
            {"name": "round", "type": "uint256"},
            {"name": "user", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "getTotalQueuedWithdrawal",
        "stateMutability": "view",
        "inputs": [{"name": "round", "type": "uint256"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "getRedeemableAmounts",
        "stateMutability": "view",
        "inputs": [
            {"name": "round", "type": "uint256"},
            {"name": "user", "type": "address"},
        ],
        "outputs": [
            {"name": "amountX", "type": "uint256"},
            {"name": "amountY", "type": "uint256"},
        ],
    },
    {
        "type": "function",
        "name": "getStrategy",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
]

STRATEGY_READ_ABI = [
    {
        "type": "function",
        "name": "getIdleBalances",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "amountX", "type": "uint256"},
            {"name": "amountY", "type": "uint256"},
        ],
    },
    {
        "type": "function",
        "name": "getRange",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "low", "type": "int32"},
            {"name": "upper", "type": "int32"},
        ],
    },
]

LB_PAIR_READ_ABI = [
    {
        "type": "function",
        "name": "getActiveId",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "activeId", "type": "uint24"}],
    },
    {
        "type": "function",
        "name": "getBinStep",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint16"}],
    },
]

CL_POOL_READ_ABI = [
    {
        "type": "function",
        "name": "slot0",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "sqrtPriceX96", "type": "uint160"},
            {"name": "tick", "type": "int24"},
            {"name": "observationIndex", "type": "uint16"},
            {"name": "observationCardinality", "type": "uint16"},
            {"name": "observationCardinalityNext", "type": "uint16"},
            {"name": "feeProtocol", "type": "uint8"},
            {"name": "unlocked", "type": "bool"},
        ],
    },
    {
        "type": "function",
        "name": "tickSpacing",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "int24"}],
    },
]

ORACLE_HELPER_READ_ABI = [
    {
        "type": "function",
        "name": "getPrice",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "price", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "getOracleParameters",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "minPrice", "type": "uint256"},
                    {"name": "maxPrice", "type": "uint256"},
                    {"name": "heartbeatX", "type": "uint24"},
                    {"name": "heartbeatY", "type": "uint24"},
                    {"name": "deviationThreshold", "type": "uint256"},
                    {"name": "twapPriceCheckEnabled", "type": "bool"},
                    {"name": "twapInterval", "type": "uint40"},
                ],
            }
        ],
    },
]
