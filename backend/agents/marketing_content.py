"""
Theme messages for the daily marketing post.

Each theme is an idea payload the model paraphrases; it is never copied
verbatim. The poster rotates through them with a shuffled bag.
"""
from typing import List

from pydantic import BaseModel


class MarketingTheme(BaseModel):
    id: str
    focus: str
    source: str


WORLD_DIGEST = """Wars of Cards
- Multiplayer card-gaming world on NEAR: instant table moves, settlement on-chain.
- Free to play with a NEAR wallet. Never asks for seed phrases or private keys.
- CARDS economy: daily claim, minimum bet 10 CARDS, token packs.
- Blackjack: single table, up to 3 seats, dealer hits 16 and stands on 17, 6-deck shoe.
- Roadmap: Texas Hold'em poker in development."""


MARKETING_THEMES: List[MarketingTheme] = [
    MarketingTheme(
        id="theme-world",
        focus="Dark Forest world intro (the Blackjack ritual), as a playful update.",
        source=(
            "Whispers speak of Blackjack, hidden in the Dark Forest, raising a rebel army of Cards. "
            "Only the brave face him at his table, chasing 21 without going over. "
            "Victory steals his forces; defeat sends you home in shame. "
            "The Dark Forest grants Cards daily."
        ),
    ),
    MarketingTheme(
        id="theme-narrative",
        focus="Why narrative matters for on-chain games: culture and community memory.",
        source=(
            "On-chain games generate thousands of events: players come and go, rounds resolve, tokens move. "
            "Data alone tells no story. Without narrative there is no culture and no memory. "
            "Whisper turns raw events into lore and moments."
        ),
    ),
    MarketingTheme(
        id="theme-build-vs-market",
        focus="The build-or-market pain for small teams, and Whisper as the workaround.",
        source=(
            "Indie teams face an impossible choice: build the game or market it. "
            "Whisper is an event-driven agent that turns live game data into narrative and posts."
        ),
    ),
    MarketingTheme(
        id="theme-whisper",
        focus="What Whisper does, told as world lore rather than a feature list.",
        source=(
            "Whisper listens to round-end events and reacts with real-time commentary. "
            "It also writes a living chronicle that grows with the game, and short posts with images "
            "when available. Whisper wakes when there is something to say."
        ),
    ),
    MarketingTheme(
        id="theme-realtime",
        focus="Real-time multiplayer on a fast chain, without overclaiming.",
        source=(
            "Fast finality makes live multiplayer card games viable on-chain: rounds resolve, "
            "bets settle, Whisper gets the signal. Keep it grounded, promise nothing new."
        ),
    ),
    MarketingTheme(
        id="theme-agent-identity",
        focus="An agent with its own identity and a live token economy, as a 'this is real' update.",
        source=(
            "Whisper posts from its own account: an agent with an identity, not a script. "
            "Players claim daily tokens, buy packs and wager in multiplayer. "
            "This is activity and settlement, not a concept."
        ),
    ),
]
