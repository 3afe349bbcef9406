"""Prediction market core contract ABI (the subset this service reads)."""

CREATE_MARKET_SIGNATURE = "createMarket(string,uint256,string,string,string,string)"

MARKET_EVENT_NAMES = ("MarketCreated", "SharesBought", "MarketResolved")

PREDICTION_MARKET_CORE_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "marketId", "type": "uint256"},
            {"indexed": True, "name": "creator", "type": "address"},
            {"indexed": False, "name": "question", "type": "string"},
            {"indexed": False, "name": "description", "type": "string"},
            {"indexed": False, "name": "source", "type": "string"},
            {"indexed": False, "name": "endTime", "type": "uint256"},
            {"indexed": False, "name": "creationFee", "type": "uint256"},
        ],
        "name": "MarketCreated",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "marketId", "type": "uint256"},
            {"indexed": True, "name": "buyer", "type": "address"},
            {"indexed": False, "name": "shares", "type": "uint256"},
            {"indexed": False, "name": "amount", "type": "uint256"},
            {"indexed": False, "name": "isYes", "type": "bool"},
        ],
        "name": "SharesBought",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "marketId", "type": "uint256"},
            {"indexed": True, "name": "resolver", "type": "address"},
            {"indexed": False, "name": "outcome", "type": "bool"},
        ],
        "name": "MarketResolved",
        "type": "event",
    },
    {
        "inputs": [{"name": "_marketId", "type": "uint256"}],
        "name": "getMarket",
        "outputs": [
            {
                "components": [
                    {"name": "id", "type": "uint256"},
                    {"name": "question", "type": "string"},
                    {"name": "endTime", "type": "uint256"},
                    {"name": "totalPool", "type": "uint256"},
                    {"name": "totalYes", "type": "uint256"},
                    {"name": "totalNo", "type": "uint256"},
                    {"name": "status", "type": "uint8"},
                    {"name": "outcome", "type": "bool"},
                    {"name": "createdAt", "type": "uint256"},
                    {"name": "creator", "type": "address"},
                ],
                "name": "",
                "type": "tuple",
            }
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "_marketId", "type": "uint256"}],
        "name": "getMarketMetadata",
        "outputs": [
            {"name": "description", "type": "string"},
            {"name": "category", "type": "string"},
            {"name": "image", "type": "string"},
            {"name": "source", "type": "string"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "getMarketCount",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "_question", "type": "string"},
            {"name": "_endTime", "type": "uint256"},
            {"name": "_description", "type": "string"},
            {"name": "_category", "type": "string"},
            {"name": "_image", "type": "string"},
            {"name": "_source", "type": "string"},
        ],
        "name": "createMarket",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
]
