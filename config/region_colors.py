"""Display colours for haplogroups and broad regions.

Subclades inherit the colour of their closest listed parent, found by
longest-prefix match.
"""
from types import MappingProxyType

DEFAULT_COLOR = "#3B82F6"

HAPLOGROUP_COLORS = MappingProxyType({
    # R - blues
    "R": "#4169E1",
    "R1B": "#3B5998",
    "R1B-U106": "#4A6FA5",
    "R1B-P312": "#2C4A7C",
    "R1B-L21": "#1E3A5F",
    "R1A": "#5BC0EB",
    "R1A-Z282": "#4DA8D5",
    "R1A-Z93": "#3B8BBE",
    "R2": "#6495ED",
    # I - purples
    "I": "#9B59B6",
    "I2": "#8E44AD",
    "I2A2": "#7D3C98",
    "I2B": "#7D3C98",
    # N - teals
    "N": "#1ABC9C",
    "N1C": "#16A085",
    # O - reds
    "O": "#E74C3C",
    "O1B": "#D63031",
    "O2": "#C0392B",
    "O2B": "#B33939",
    "O3": "#A93226",
    # Q - oranges
    "Q": "#F39C12",
    "Q1B": "#E67E22",
    "Q-M242": "#D68910",
    # J - greens
    "J": "#27AE60",
    "J2": "#229954",
    "J2B": "#1E8449",
    "J-M172": "#229954",
    # E - tans
    "E": "#D4A373",
    "E1B": "#C19A6B",
    "E1B1A": "#B8860B",
    "E1B1B": "#CD853F",
    "E-V13": "#CD853F",
    "E-M35": "#CD853F",
    # Others
    "D": "#922B21",
    "D2": "#7B241C",
    "C": "#F1C40F",
    "C2": "#D4AC0D",
    "C-M217": "#D4AC0D",
    "G": "#7CB518",
    "G2": "#6B9B0D",
    "T": "#6B8E23",
    "L": "#FF6B35",
    "H": "#00CED1",
    "A": "#8B4513",
    "A00": "#5D3A1A",
    "A0": "#6B4423",
    "A1": "#7A4B28",
    "B": "#654321",
    "M": "#7B3F00",
})

REGION_COLORS = MappingProxyType({
    "EUROPE": "#4169E1",
    "NORTHERN EUROPE": "#9B59B6",
    "NORTHERN SCANDINAVIA": "#1ABC9C",
    "EASTERN EUROPE": "#5BC0EB",
    "SOUTHEASTERN EUROPE": "#8E44AD",
    "SOUTHERN EUROPE": "#229954",
    "WESTERN EUROPE": "#3B5998",
    "CENTRAL EUROPE": "#4A6FA5",
    "EAST ASIA": "#E74C3C",
    "NORTHEAST ASIA": "#D4AC0D",
    "SOUTHEAST ASIA": "#D63031",
    "SOUTH ASIA": "#FF6B35",
    "SOUTH INDIA": "#00CED1",
    "CENTRAL ASIA": "#16A085",
    "SIBERIA": "#1ABC9C",
    "MIDDLE EAST": "#27AE60",
    "ARABIAN PENINSULA": "#27AE60",
    "CAUCASUS": "#7CB518",
    "NORTH AFRICA": "#CD853F",
    "EAST AFRICA": "#6B8E23",
    "WEST AFRICA": "#B8860B",
    "CENTRAL AFRICA": "#B8860B",
    "SOUTHERN AFRICA": "#8B4513",
    "POLYNESIA": "#F1C40F",
    "MELANESIA": "#7B3F00",
    "AUSTRALIA": "#F1C40F",
    "NORTH AMERICA": "#F39C12",
    "CENTRAL AMERICA": "#F39C12",
    "SOUTH AMERICA": "#E67E22",
    "ARCTIC": "#E67E22",
    "JAPAN": "#922B21",
})


def lookup_color(label: str | None, table=HAPLOGROUP_COLORS, default: str = DEFAULT_COLOR) -> str:
    """Colour of the longest table key that prefixes the label."""
    if not label:
        return default
    key = label.strip().upper()
    best = None
    for prefix in table:
        if key.startswith(prefix) and (best is None or len(prefix) > len(best)):
            best = prefix
    return table[best] if best is not None else default


def candidate_color(haplogroup: str | None, regions=()) -> str:
    """Haplogroup colour if known, else the colour of the first known region."""
    if haplogroup:
        return lookup_color(haplogroup)
    for region in regions:
        color = lookup_color(region, REGION_COLORS, default="")
        if color:
            return color
    return DEFAULT_COLOR
