"""Asset type detection and keyword generation for news matching.

Mutual funds rarely show up in headlines by ticker, so they get a wider set
of keywords (fund family, strategy words) than stocks do.
"""

import re
from typing import Any, Dict, List, Optional

FUND_FAMILY_PATTERN = re.compile(
    r'^(Fidelity|Vanguard|T\. Rowe Price|American Funds|PIMCO|BlackRock|JPMorgan|Schwab|Franklin Templeton)',
    re.IGNORECASE,
)

FUND_STRATEGY_WORDS = [
    'Contrafund', 'Growth', 'Value', 'Index', 'Equity', 'Income',
    'Bond', 'International', 'Global', 'Balanced', 'Target', 'Select',
]

CORPORATE_SUFFIX_PATTERN = re.compile(r'\s+(Inc\.|Corp\.|Corporation|Ltd\.|LLC|Co\.)$', re.IGNORECASE)

KNOWN_ETFS = {
    'SPY', 'QQQ', 'IWM', 'DIA', 'VTI', 'VOO', 'VEA',
    'IVV', 'AGG', 'BND', 'GLD', 'SLV', 'USO',
}

INDEX_PATTERNS = [re.compile(r'^\^'), re.compile(r'^\.')]
CRYPTO_PATTERNS = [
    re.compile(r'^BTC'), re.compile(r'^ETH'), re.compile(r'^DOGE'),
    re.compile(r'^SOL'), re.compile(r'^ADA'),
    re.compile(r'-USD$'), re.compile(r'-EUR$'), re.compile(r'-GBP$'),
]
MUTUAL_FUND_PATTERN = re.compile(r'^[A-Z]{4}X$')
SECTOR_SPDR_PATTERN = re.compile(r'^XL[A-Z]$')
# iShares / Vanguard style tickers; loose, so a metadata hint wins
FUND_FAMILY_TICKER_PATTERNS = [re.compile(r'^I[A-Z]{2,3}$'), re.compile(r'^V[A-Z]{2,3}$')]


def is_mutual_fund(symbol: str, asset_type: Optional[str] = None) -> bool:
    """Return True for explicit mutual funds and 5-letter tickers ending in X."""
    if asset_type in ('Mutual Fund', 'mutual_fund'):
        return True
    return len(symbol) == 5 and symbol.upper().endswith('X')


def _type_from_metadata(metadata: Optional[Dict[str, Any]]) -> Optional[str]:
    if not metadata or not metadata.get('type'):
        return None
    type_str = str(metadata['type']).lower()
    if 'etf' in type_str or 'exchange traded' in type_str:
        return 'etf'
    if 'mutual' in type_str or 'fund' in type_str:
        return 'mutual_fund'
    if 'crypto' in type_str:
        return 'crypto'
    if 'index' in type_str:
        return 'index'
    if 'stock' in type_str or 'equity' in type_str:
        return 'stock'
    return None


def infer_asset_type(symbol: str, metadata: Optional[Dict[str, Any]] = None) -> str:
    """Guess the asset type from ticker patterns and optional vendor metadata.

    Args:
        symbol: Ticker symbol, any case.
        metadata: Optional vendor payload with a ``type`` description.

    Returns:
        One of ``index``, ``crypto``, ``mutual_fund``, ``etf`` or ``stock``.
    """
    upper = symbol.upper()

    if any(p.search(upper) for p in INDEX_PATTERNS):
        return 'index'
    if any(p.search(upper) for p in CRYPTO_PATTERNS):
        return 'crypto'
    if MUTUAL_FUND_PATTERN.match(upper):
        return 'mutual_fund'
    if upper in KNOWN_ETFS or SECTOR_SPDR_PATTERN.match(upper):
        return 'etf'

    hinted = _type_from_metadata(metadata)
    if hinted:
        return hinted

    if any(p.match(upper) for p in FUND_FAMILY_TICKER_PATTERNS):
        return 'etf'

    return 'stock'


def strip_corporate_suffix(name: str) -> str:
    return CORPORATE_SUFFIX_PATTERN.sub('', name).strip()


def generate_asset_keywords(symbol: str, name: str, asset_type: Optional[str] = None) -> List[str]:
    """Build the keyword list used to match news against an asset.

    The symbol always comes first. Duplicates are removed keeping the first
    occurrence, and blank entries are dropped.
    """
    keywords = [symbol]

    if is_mutual_fund(symbol, asset_type):
        keywords.append(name)

        family = FUND_FAMILY_PATTERN.match(name or '')
        if family:
            keywords.append(family.group(1))
            keywords.append(f"{family.group(1)}'s")

        lowered = (name or '').lower()
        for strategy in FUND_STRATEGY_WORDS:
            if strategy.lower() in lowered:
                keywords.append(strategy)

        keywords.extend(['fund', 'mutual fund'])
    else:
        keywords.append(name)
        clean_name = strip_corporate_suffix(name or '')
        if clean_name != name:
            keywords.append(clean_name)

    seen = set()
    result = []
    for keyword in keywords:
        if not keyword or not keyword.strip() or keyword in seen:
            continue
        seen.add(keyword)
        result.append(keyword)
    return result


def get_asset_metrics(symbol: str, asset_type: Optional[str] = None) -> Dict[str, Any]:
    """Display flags for an asset: funds show NAV and no earnings data."""
    if is_mutual_fund(symbol, asset_type):
        return {
            'type': 'Mutual Fund',
            'show_earnings': False,
            'show_ev_ebitda': False,
            'show_expense_ratio': True,
            'show_aum': True,
            'price_label': 'NAV',
        }
    return {
        'type': 'Stock',
        'show_earnings': True,
        'show_ev_ebitda': True,
        'show_expense_ratio': False,
        'show_aum': False,
        'price_label': 'Price',
    }
