"""Bundled sample documents and demo queries for development setups."""

from src.rag.models import Document, DocumentMetadata

SAMPLE_SOURCE = "sample-data"


def _doc(doc_id: str, domain: str, title: str, content: str, tags: list[str], content_type="article"):
    return Document(
        id=doc_id,
        content=content,
        metadata=DocumentMetadata(
            domain=domain,
            source=SAMPLE_SOURCE,
            content_type=content_type,
            title=title,
            author="Sample Author",
            tags=tags,
        ),
    )


SAMPLE_DOCUMENTS: list[Document] = [
    _doc(
        "sample-fitness-hiit",
        "fitness",
        "20-Minute HIIT Routine",
        "High-intensity interval training alternates short bursts of maximal effort with brief "
        "recovery. A simple routine: 40 seconds of burpees, 20 seconds rest, 40 seconds of "
        "mountain climbers, 20 seconds rest, 40 seconds of jump squats, 20 seconds rest. "
        "Repeat the circuit four times.\n\nWarm up for five minutes first and cool down with "
        "light stretching. Two or three HIIT sessions per week are enough for most people.",
        ["hiit", "cardio", "workout"],
    ),
    _doc(
        "sample-fitness-strength",
        "fitness",
        "Building Muscle with Progressive Overload",
        "Muscle grows when training stress increases over time. Add weight, repetitions or sets "
        "each week while keeping good form. Compound lifts such as squats, deadlifts, bench "
        "press and rows give the most return for the time spent.\n\nSleep seven to nine hours "
        "and eat enough protein, around 1.6 grams per kilogram of body weight.",
        ["strength", "muscle"],
    ),
    _doc(
        "sample-fitness-nutrition",
        "fitness",
        "Nutrition Basics for Training",
        "Eat mostly whole foods: lean proteins, vegetables, fruit, whole grains and healthy fats. "
        "A meal with protein and carbohydrates within a few hours after training supports "
        "recovery. Drink water throughout the day and more on training days.",
        ["nutrition", "recovery"],
        content_type="note",
    ),
    _doc(
        "sample-trading-risk",
        "trading",
        "Risk Management Essentials",
        "Never risk more than one or two percent of your account on a single trade. Decide the "
        "stop-loss level before entering a position and size the position so that hitting the "
        "stop costs at most that amount.\n\nDiversify across uncorrelated assets and keep a "
        "trading journal to review decisions.",
        ["risk", "position-sizing"],
    ),
    _doc(
        "sample-trading-defi",
        "trading",
        "Understanding DeFi Yield Farming",
        "Yield farming means providing liquidity to decentralized protocols in exchange for fees "
        "and token rewards. Returns can be high, but so are the risks: smart contract bugs, "
        "impermanent loss and reward tokens that lose value quickly. Start small and prefer "
        "audited protocols.",
        ["defi", "crypto"],
    ),
    _doc(
        "sample-general-chisao",
        "general",
        "Chi-Sao Practice",
        "Chi-Sao, or sticking hands, is a Wing Chun drill that trains sensitivity and reflexes. "
        "Partners keep their forearms in contact and roll through set positions, learning to "
        "feel pressure changes and respond without looking. Stay relaxed; tension slows you down.",
        ["martial-arts", "wing-chun"],
        content_type="post",
    ),
    _doc(
        "sample-general-sparring",
        "general",
        "Why Sparring Matters",
        "Drills build technique, but sparring tests it against a resisting partner. Start with "
        "light, cooperative rounds and increase intensity gradually. Protective gear and a "
        "trusted partner keep sparring productive rather than dangerous.",
        ["martial-arts", "sparring"],
        content_type="post",
    ),
]

DEMO_QUERIES: list[tuple[str, str]] = [
    ("What's the best HIIT workout routine?", "fitness"),
    ("How do I manage risk in crypto trading?", "trading"),
    ("What are some nutrition tips for fitness?", "fitness"),
    ("Tell me about DeFi yield farming strategies", "trading"),
    ("How do I practice Chi-Sao?", "general"),
]


def sample_documents_for(domain: str) -> list[Document]:
    return [doc for doc in SAMPLE_DOCUMENTS if doc.domain == domain]
