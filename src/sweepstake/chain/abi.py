"""ABI for the subset of the lottery contract the orchestrator uses."""


def _view(name: str, output_type: str, inputs: list[dict] | None = None) -> dict:
    return {
        "type": "function",
        "name": name,
        "stateMutability": "view",
        "inputs": inputs or [],
        "outputs": [{"name": "", "type": output_type}],
    }


LOTTO_ABI: list[dict] = [
    _view("roundId", "uint256"),
    _view("roundStart", "uint256"),
    _view("ROUND_DURATION", "uint256"),
    _view("getParticipantsCount", "uint256"),
    _view("getPoolBalance", "uint256"),
    _view("drawingInProgress", "bool"),
    _view("winningNumbers", "uint256", [{"name": "index", "type": "uint256"}]),
    _view("getRewardRecipient", "address", [{"name": "round", "type": "uint256"}]),
    {
        "type": "function",
        "name": "requestWinningNumbers",
        "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": [],
    },
    {
        "type": "event",
        "name": "TicketPurchased",
        "anonymous": False,
        "inputs": [
            {"name": "roundId", "type": "uint256", "indexed": True},
            {"name": "player", "type": "address", "indexed": True},
            {"name": "numbers", "type": "uint256[]", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "WinningNumbersPick",
        "anonymous": False,
        "inputs": [
            {"name": "roundId", "type": "uint256", "indexed": True},
            {"name": "numbers", "type": "uint256[]", "indexed": False},
            {"name": "prizePool", "type": "uint256", "indexed": False},
        ],
    },
]

ENTRY_EVENT = "TicketPurchased"
RESOLVED_EVENT = "WinningNumbersPick"
TRANSITION_FUNCTION = "requestWinningNumbers"
