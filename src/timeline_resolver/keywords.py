"""Curated keyword tables mapping historical figures, events and eras to a year.

Only specific names belong here. Plain era words ("medieval", "colonial"),
professions ("samurai", "knight") and technology nouns ("steam engine",
"railroad") are deliberately absent: a generic noun matching a modern story
is worse than no match at all.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from functools import lru_cache

from timeline_resolver.models import GenreFamily, has_genre

# ------------- Synopsis Keyword Table -------------

PERIOD_KEYWORDS: dict[str, int] = {
    # Antiquity
    "cleopatra": -30,
    "julius caesar": -44,
    "alexander the great": -323,
    "spartacus": -71,
    "pompeii": 79,
    # Middle ages & renaissance
    "joan of arc": 1429,
    "ジャンヌ・ダルク": 1429,
    "black death": 1348,
    "magna carta": 1215,
    "leonardo da vinci": 1500,
    "michelangelo": 1504,
    "galileo": 1610,
    # Japanese eras
    "戦国時代": 1550,
    "江戸時代": 1700,
    "明治時代": 1890,
    "大正時代": 1920,
    "昭和時代": 1950,
    "本能寺": 1582,
    "関ヶ原": 1600,
    "sekigahara": 1600,
    "幕末": 1865,
    "bakumatsu": 1865,
    "明治維新": 1868,
    "meiji restoration": 1868,
    "tokugawa": 1700,
    "徳川": 1700,
    "shogunate": 1700,
    # European dynastic eras
    "elizabethan": 1580,
    "victorian era": 1860,
    "victorian": 1860,
    "ヴィクトリア朝": 1860,
    "regency era": 1815,
    "georgian era": 1750,
    "belle epoque": 1900,
    "belle époque": 1900,
    "spanish inquisition": 1480,
    "ottoman empire": 1600,
    "qing dynasty": 1750,
    "ming dynasty": 1500,
    # Exploration
    "columbus": 1492,
    "コロンブス": 1492,
    "magellan": 1520,
    # American history
    "mayflower": 1620,
    "american revolution": 1776,
    "revolutionary war": 1776,
    "declaration of independence": 1776,
    "アメリカ独立": 1776,
    "gettysburg": 1863,
    "ゲティスバーグ": 1863,
    "abraham lincoln": 1863,
    "リンカーン": 1863,
    "gold rush": 1849,
    "ゴールドラッシュ": 1849,
    "oregon trail": 1850,
    "ok corral": 1881,
    "billy the kid": 1881,
    "jesse james": 1882,
    "civil war": 1863,
    "american civil war": 1863,
    "南北戦争": 1863,
    "underground railroad": 1850,
    "harriet tubman": 1850,
    "frederick douglass": 1850,
    "emancipation proclamation": 1863,
    "奴隷解放宣言": 1863,
    # Revolutionary & Napoleonic France
    "french revolution": 1789,
    "フランス革命": 1789,
    "marie antoinette": 1789,
    "マリー・アントワネット": 1789,
    "bastille": 1789,
    "reign of terror": 1793,
    "napoleon": 1805,
    "ナポレオン": 1805,
    "waterloo": 1815,
    "industrial revolution": 1820,
    "産業革命": 1820,
    # First world war
    "verdun": 1916,
    "somme": 1916,
    "gallipoli": 1915,
    "ガリポリ": 1915,
    "armistice": 1918,
    "treaty of versailles": 1919,
    "red baron": 1917,
    "レッド・バロン": 1917,
    # Interwar
    "russian revolution": 1917,
    "ロシア革命": 1917,
    "lenin": 1920,
    "weimar republic": 1925,
    "al capone": 1930,
    "アル・カポネ": 1930,
    "wall street crash": 1929,
    "great depression": 1933,
    "大恐慌": 1933,
    "dust bowl": 1935,
    "stalin": 1935,
    # Second world war
    "hitler": 1940,
    "ヒトラー": 1940,
    "gestapo": 1940,
    "churchill": 1940,
    "チャーチル": 1940,
    "dunkirk": 1940,
    "ダンケルク": 1940,
    "battle of britain": 1940,
    "pearl harbor": 1941,
    "真珠湾": 1941,
    "holocaust": 1942,
    "ホロコースト": 1942,
    "stalingrad": 1942,
    "スターリングラード": 1942,
    "el alamein": 1942,
    "midway": 1942,
    "ミッドウェー": 1942,
    "vichy france": 1942,
    "rommel": 1942,
    "auschwitz": 1943,
    "アウシュヴィッツ": 1943,
    "anne frank": 1944,
    "アンネ・フランク": 1944,
    "d-day": 1944,
    "normandy": 1944,
    "ノルマンディー": 1944,
    "omaha beach": 1944,
    "オマハ・ビーチ": 1944,
    "battle of the bulge": 1944,
    "バルジの戦い": 1944,
    "anzio": 1944,
    "monte cassino": 1944,
    "patton": 1944,
    "iwo jima": 1945,
    "硫黄島": 1945,
    "okinawa": 1945,
    "沖縄戦": 1945,
    "hiroshima": 1945,
    "広島": 1945,
    "nagasaki": 1945,
    "長崎": 1945,
    "atomic bomb": 1945,
    "原爆": 1945,
    "v-e day": 1945,
    "v-j day": 1945,
    # Cold war
    "korean war": 1951,
    "朝鮮戦争": 1951,
    "bay of pigs": 1961,
    "cuban missile crisis": 1962,
    "キューバ危機": 1962,
    "vietnam war": 1968,
    "ベトナム戦争": 1968,
    "tet offensive": 1968,
    "安保闘争": 1960,
    "全共闘": 1968,
    # 1950s-1980s
    "martin luther king": 1963,
    "キング牧師": 1963,
    "kennedy assassination": 1963,
    "apollo 11": 1969,
    "アポロ11号": 1969,
    "moon landing": 1969,
    "月面着陸": 1969,
    "neil armstrong": 1969,
    "woodstock": 1969,
    "oil crisis": 1973,
    "石油危機": 1973,
    "watergate": 1974,
    "ウォーターゲート": 1974,
    "chernobyl": 1986,
    "チェルノブイリ": 1986,
    "バブル経済": 1989,
    # 1989 onwards
    "fall of the berlin wall": 1989,
    "ベルリンの壁崩壊": 1989,
    "gulf war": 1991,
    "湾岸戦争": 1991,
    "9/11": 2001,
    "september 11": 2001,
    "同時多発テロ": 2001,
    "iraq war": 2005,
    "イラク戦争": 2005,
    # Disasters
    "san francisco earthquake": 1906,
    "titanic": 1912,
    "タイタニック号": 1912,
    "great kanto earthquake": 1923,
    "関東大震災": 1923,
}

# Named battles and places outrank every other hit
SPECIFIC_KEYWORDS = frozenset(
    {
        "iwo jima",
        "硫黄島",
        "normandy",
        "ノルマンディー",
        "stalingrad",
        "スターリングラード",
        "pearl harbor",
        "真珠湾",
        "hiroshima",
        "広島",
        "nagasaki",
        "長崎",
        "midway",
        "ミッドウェー",
        "okinawa",
        "沖縄戦",
        "d-day",
        "dunkirk",
        "ダンケルク",
        "verdun",
        "somme",
        "gallipoli",
        "ガリポリ",
        "anzio",
        "monte cassino",
        "el alamein",
        "battle of the bulge",
        "バルジの戦い",
        "omaha beach",
        "オマハ・ビーチ",
    }
)

# Keys that only fire when the work carries one of the listed genres
GENRE_GATED_KEYWORDS: dict[str, tuple[GenreFamily, ...]] = {
    "civil war": (GenreFamily.WAR, GenreFamily.HISTORY),
    "american civil war": (GenreFamily.WAR, GenreFamily.HISTORY),
    "南北戦争": (GenreFamily.WAR, GenreFamily.HISTORY),
}

# ------------- Reference Prose Keyword Table -------------

# Encyclopedia prose names its subject plainly, so this table can afford a
# few broader entries than the synopsis table, and is consulted last.
REFERENCE_KEYWORDS: dict[str, int] = {
    "roman empire": 100,
    "king arthur": 500,
    "genghis khan": 1220,
    "marco polo": 1275,
    "henry viii": 1535,
    "elizabeth i": 1580,
    "thirty years war": 1635,
    "louis xiv": 1680,
    "peter the great": 1700,
    "seven years war": 1757,
    "war of 1812": 1812,
    "queen victoria": 1850,
    "crimean war": 1854,
    "american civil war": 1863,
    "wild west": 1875,
    "old west": 1875,
    "world war i": 1916,
    "first world war": 1916,
    "world war ii": 1942,
    "second world war": 1942,
    "great depression": 1933,
    "korean war": 1951,
    "vietnam war": 1968,
    "cold war": 1962,
    "gulf war": 1991,
    "iraq war": 2005,
}


@dataclass(frozen=True)
class KeywordHit:
    """One keyword found in the text."""

    keyword: str
    year: int
    rank: int


def keyword_rank(keyword: str) -> int:
    """1 for named battles/places, 2 for everything else (lower wins)."""
    return 1 if keyword in SPECIFIC_KEYWORDS else 2


@lru_cache(maxsize=1024)
def _keyword_regex(keyword: str) -> re.Pattern[str] | None:
    if re.fullmatch(r"[a-z0-9\s/-]+", keyword):
        return re.compile(rf"(?<![\w-]){re.escape(keyword)}(?![\w-])")
    return None


def keyword_in_text(keyword: str, text: str) -> bool:
    """Whole-word match for alphanumeric keys, substring match for other scripts."""
    pattern = _keyword_regex(keyword)
    if pattern is None:
        return keyword in text
    return pattern.search(text) is not None


def match_keywords(
    text: str,
    genres: Iterable[str] | None = None,
    table: Mapping[str, int] = PERIOD_KEYWORDS,
    gated: Mapping[str, tuple[GenreFamily, ...]] = GENRE_GATED_KEYWORDS,
) -> list[KeywordHit]:
    """Return the best-ranked keyword hits in ``text``.

    Args:
        text: Lowercased text to scan
        genres: Genre tags of the work, used for gated keys
        table: Keyword -> representative year
        gated: Keyword -> genre families required for it to fire

    Returns:
        Hits sharing the best (lowest) rank, in table order. Empty if none.
    """
    tags = list(genres or ())
    hits: list[KeywordHit] = []
    for keyword, year in table.items():
        required = gated.get(keyword)
        if required and not has_genre(tags, *required):
            continue
        if keyword_in_text(keyword, text):
            hits.append(KeywordHit(keyword, year, keyword_rank(keyword)))
    if not hits:
        return []
    best = min(hit.rank for hit in hits)
    return [hit for hit in hits if hit.rank == best]
