"""Pools drawn from when assigning anonymous identities.

Each pool is larger than the maximum number of players in a party so every
player gets a distinct alias, silhouette and color.
"""

ALIAS_POOL = (
    # Cosmic
    "Shadow Wolf",
    "Midnight Phoenix",
    "Cosmic Dancer",
    "Neon Phantom",
    "Stellar Viper",
    "Lunar Echo",
    "Nova Spark",
    "Astral Raven",
    # Music
    "Bass Bandit",
    "Rhythm Ghost",
    "Sonic Specter",
    "Beat Ninja",
    "Melody Mystic",
    "Tempo Thief",
    "Vinyl Vortex",
    "Synth Serpent",
    # Elements
    "Electric Falcon",
    "Thunder Fox",
    "Crystal Cobra",
    "Frost Panther",
    "Storm Hawk",
    "Ember Tiger",
    "Ocean Owl",
    "Jade Dragon",
    # Mysterious
    "Velvet Shadow",
    "Chrome Sphinx",
    "Prism Prowler",
    "Cipher Knight",
    "Quantum Jester",
    "Void Walker",
    "Pixel Phantom",
    "Glitch Wizard",
    # Extra names for large parties
    "Neon Nomad",
    "Disco Demon",
    "Funk Fury",
    "Groove Guardian",
    "Pulse Pioneer",
    "Wave Warrior",
    "Echo Enigma",
    "Drift Dancer",
)

SILHOUETTE_POOL = (
    "wolf", "phoenix", "cat", "owl", "fox", "raven", "panther", "dragon",
    "robot", "ghost", "ninja", "wizard", "knight", "jester", "sphinx", "alien",
    "diamond", "star", "moon", "sun", "crystal", "prism", "orb", "flame",
)

COLOR_POOL = (
    "#A855F7",  # purple
    "#06B6D4",  # cyan
    "#EC4899",  # pink
    "#8B5CF6",  # violet
    "#3B82F6",  # blue
    "#14B8A6",  # teal
    "#22C55E",  # green
    "#EAB308",  # yellow
    "#F97316",  # orange
    "#EF4444",  # red
    "#F472B6",  # light pink
    "#818CF8",  # light violet
    "#C084FC",  # light purple
    "#22D3EE",  # light cyan
    "#34D399",  # light teal
    "#FBBF24",  # amber
)
