"""
Tier Resolver.

Maps a point balance to a loyalty tier using the organization's custom tier
table, or the built-in defaults when the organization has none.

Tier table selection is made once per service instance:
- TierTable.custom(rows) when the organization's rows form a valid ladder
- TierTable.default() otherwise (no rows, or a partial/corrupt table)

Tables are never mixed: a custom table missing BRONZE, with duplicate
levels, or with non-increasing thresholds is ignored entirely.
"""
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, List, NamedTuple, Tuple
from flask import current_app

from ..extensions import db
from ..models.loyalty import LoyaltyTier, TIER_ORDER
from ..utils.exceptions import ValidationError, NotFoundError


# Built-in tier ladder, lowest first
DEFAULT_TIERS = [
    {
        'tier': 'BRONZE',
        'name': 'Bronze',
        'min_points': 0,
        'points_per_dollar': Decimal('1'),
        'benefits': ['1 point per $1 spent'],
    },
    {
        'tier': 'SILVER',
        'name': 'Silver',
        'min_points': 500,
        'points_per_dollar': Decimal('1.5'),
        'benefits': ['1.5 points per $1 spent', '5% discount'],
    },
    {
        'tier': 'GOLD',
        'name': 'Gold',
        'min_points': 1500,
        'points_per_dollar': Decimal('2'),
        'benefits': ['2 points per $1 spent', '10% discount', 'Free shipping'],
    },
    {
        'tier': 'PLATINUM',
        'name': 'Platinum',
        'min_points': 3000,
        'points_per_dollar': Decimal('2.5'),
        'benefits': ['2.5 points per $1 spent', '15% discount', 'Free shipping', 'Priority support'],
    },
    {
        'tier': 'DIAMOND',
        'name': 'Diamond',
        'min_points': 5000,
        'points_per_dollar': Decimal('3'),
        'benefits': [
            '3 points per $1 spent',
            '20% discount',
            'Free shipping',
            'Priority support',
            'Exclusive access',
        ],
    },
]


class TierThreshold(NamedTuple):
    """One rung of a tier ladder."""
    tier: str
    name: str
    min_points: int
    points_per_dollar: Decimal
    benefits: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tier': self.tier,
            'name': self.name,
            'min_points': self.min_points,
            'points_per_dollar': float(self.points_per_dollar),
            'benefits': list(self.benefits),
        }


class TierTable:
    """
    Resolved tier ladder for one organization.

    `source` is 'custom' or 'default'. Thresholds are held ascending.
    """

    CUSTOM = 'custom'
    DEFAULT = 'default'

    def __init__(self, source: str, thresholds: List[TierThreshold]):
        self.source = source
        self.thresholds = sorted(thresholds, key=lambda t: t.min_points)

    @classmethod
    def default(cls) -> 'TierTable':
        return cls(cls.DEFAULT, [
            TierThreshold(
                tier=t['tier'],
                name=t['name'],
                min_points=t['min_points'],
                points_per_dollar=t['points_per_dollar'],
                benefits=tuple(t['benefits']),
            )
            for t in DEFAULT_TIERS
        ])

    @classmethod
    def custom(cls, rows: List[LoyaltyTier]) -> 'TierTable':
        return cls(cls.CUSTOM, [
            TierThreshold(
                tier=row.tier,
                name=row.name or row.tier.title(),
                min_points=row.min_points,
                points_per_dollar=Decimal(str(row.points_per_dollar or 1)),
                benefits=tuple(row.benefits or ()),
            )
            for row in rows
        ])

    @property
    def is_custom(self) -> bool:
        return self.source == self.CUSTOM

    def resolve(self, points: int) -> TierThreshold:
        """Highest tier whose threshold is at or below the points."""
        for threshold in reversed(self.thresholds):
            if threshold.min_points <= points:
                return threshold
        return self.thresholds[0]

    def get(self, tier: str) -> Optional[TierThreshold]:
        for threshold in self.thresholds:
            if threshold.tier == tier:
                return threshold
        return None

    def next_after(self, tier: str) -> Optional[TierThreshold]:
        for index, threshold in enumerate(self.thresholds):
            if threshold.tier == tier and index + 1 < len(self.thresholds):
                return self.thresholds[index + 1]
        return None

    def to_list(self) -> List[Dict[str, Any]]:
        return [t.to_dict() for t in self.thresholds]


def validate_tier_table(rows) -> List[str]:
    """
    Check that tier rows form a usable ladder.

    Accepts LoyaltyTier rows or dicts with tier/min_points keys.

    Returns:
        List of problems; empty when the table is valid
    """
    problems = []

    entries = []
    for row in rows:
        if isinstance(row, dict):
            entries.append((str(row.get('tier', '')).upper(), row.get('min_points')))
        else:
            entries.append(((row.tier or '').upper(), row.min_points))

    if not entries:
        return ['Tier table is empty']

    tiers = [tier for tier, _ in entries]
    unknown = [tier for tier in tiers if tier not in TIER_ORDER]
    if unknown:
        problems.append(f"Unknown tier level(s): {', '.join(unknown)}")

    if len(set(tiers)) != len(tiers):
        problems.append('Duplicate tier levels')

    if any(min_points is None or min_points < 0 for _, min_points in entries):
        problems.append('Thresholds must be non-negative integers')
        return problems

    ordered = sorted(entries, key=lambda e: e[1])
    if ordered[0] != ('BRONZE', 0):
        problems.append('BRONZE must be the lowest tier with a threshold of 0')

    thresholds = [min_points for _, min_points in ordered]
    if any(b <= a for a, b in zip(thresholds, thresholds[1:])):
        problems.append('Thresholds must be strictly increasing')

    # Ladder order must follow BRONZE < SILVER < ... < DIAMOND
    ranks = [TIER_ORDER.index(tier) for tier, _ in ordered if tier in TIER_ORDER]
    if ranks != sorted(ranks):
        problems.append('Tier thresholds must follow the BRONZE..DIAMOND order')

    return problems


def parse_min_points(value) -> int:
    """Coerce a threshold from request input; whole, non-negative points only."""
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValidationError('min_points must be an integer', 'min_points')
    try:
        points = int(value)
    except (TypeError, ValueError):
        raise ValidationError('min_points must be an integer', 'min_points')
    if points < 0:
        raise ValidationError('min_points must not be negative', 'min_points')
    return points


def parse_points_per_dollar(value) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError('points_per_dollar must be a number', 'points_per_dollar')
    try:
        rate = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError('points_per_dollar must be a number', 'points_per_dollar')
    if not rate.is_finite() or rate < 0:
        raise ValidationError('points_per_dollar must be a non-negative number', 'points_per_dollar')
    return rate


def parse_benefits(value) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError('benefits must be a list', 'benefits')
    return list(value)


class TierService:
    """
    Tier resolution and tier table management for one organization.

    Usage:
        service = TierService(organization_id)
        tier = service.resolve_tier(1600)   # 'GOLD' with default tiers
    """

    def __init__(self, organization_id: int):
        self.organization_id = organization_id
        self._table = None

    # ==================== Tier Table ====================

    def load_tier_table(self, refresh: bool = False) -> TierTable:
        """
        Load the organization's tier table once per service instance.

        Falls back to the default table when the organization has no rows or
        the rows do not form a valid ladder.
        """
        if self._table is not None and not refresh:
            return self._table

        rows = LoyaltyTier.query.filter_by(
            organization_id=self.organization_id
        ).order_by(LoyaltyTier.min_points.asc()).all()

        if not rows:
            self._table = TierTable.default()
            return self._table

        problems = validate_tier_table(rows)
        if problems:
            current_app.logger.warning(
                f'Organization {self.organization_id} has an invalid tier table '
                f'({"; ".join(problems)}), using default tiers'
            )
            self._table = TierTable.default()
        else:
            self._table = TierTable.custom(rows)

        return self._table

    # ==================== Resolution ====================

    def resolve_tier(self, points: int) -> str:
        """Tier for a point balance."""
        return self.load_tier_table().resolve(points or 0).tier

    def next_tier_progress(self, points: int) -> Dict[str, Any]:
        """Current tier, next tier, and points still needed to reach it."""
        table = self.load_tier_table()
        current = table.resolve(points or 0)
        upcoming = table.next_after(current.tier)

        return {
            'current_tier': current.tier,
            'points': points or 0,
            'next_tier': upcoming.tier if upcoming else None,
            'points_to_next_tier': (upcoming.min_points - (points or 0)) if upcoming else None,
            'is_top_tier': upcoming is None,
            'source': table.source
        }

    # ==================== Initialization & Admin ====================

    def initialize_tiers(self) -> Dict[str, Any]:
        """
        Write the default tier table for an organization with no tier rows.

        A no-op when the organization already has any rows.
        """
        existing = LoyaltyTier.query.filter_by(organization_id=self.organization_id).count()
        if existing:
            return {'created': 0, 'existing': existing}

        for tier in DEFAULT_TIERS:
            db.session.add(LoyaltyTier(
                organization_id=self.organization_id,
                tier=tier['tier'],
                name=tier['name'],
                min_points=tier['min_points'],
                points_per_dollar=tier['points_per_dollar'],
                benefits=list(tier['benefits'])
            ))

        db.session.commit()
        self._table = None
        current_app.logger.info(
            f'Created {len(DEFAULT_TIERS)} default loyalty tiers for organization {self.organization_id}'
        )
        return {'created': len(DEFAULT_TIERS), 'existing': 0}

    def list_tiers(self) -> List[LoyaltyTier]:
        return LoyaltyTier.query.filter_by(
            organization_id=self.organization_id
        ).order_by(LoyaltyTier.min_points.asc()).all()

    def create_tier(self, data: Dict[str, Any]) -> LoyaltyTier:
        """Add a custom tier row."""
        tier = str(data.get('tier') or '').upper()
        if tier not in TIER_ORDER:
            raise ValidationError(f"tier must be one of {', '.join(TIER_ORDER)}", 'tier')

        if data.get('min_points') is None:
            raise ValidationError('min_points is required', 'min_points')
        min_points = parse_min_points(data['min_points'])
        points_per_dollar = parse_points_per_dollar(data.get('points_per_dollar', 1))
        benefits = parse_benefits(data.get('benefits'))

        if LoyaltyTier.query.filter_by(organization_id=self.organization_id, tier=tier).first():
            raise ValidationError(f'{tier} tier already exists', 'tier')

        row = LoyaltyTier(
            organization_id=self.organization_id,
            tier=tier,
            name=data.get('name') or tier.title(),
            min_points=min_points,
            points_per_dollar=points_per_dollar,
            benefits=benefits
        )
        db.session.add(row)
        db.session.commit()
        self._table = None
        return row

    def update_tier(self, tier: str, data: Dict[str, Any]) -> LoyaltyTier:
        """Update thresholds or benefits of an existing custom tier."""
        row = LoyaltyTier.query.filter_by(
            organization_id=self.organization_id,
            tier=str(tier or '').upper()
        ).first()
        if not row:
            raise NotFoundError('Tier', tier)

        changes = {}
        if 'name' in data:
            changes['name'] = data['name']
        if 'min_points' in data:
            changes['min_points'] = parse_min_points(data['min_points'])
        if 'points_per_dollar' in data:
            changes['points_per_dollar'] = parse_points_per_dollar(data['points_per_dollar'])
        if 'benefits' in data:
            changes['benefits'] = parse_benefits(data['benefits'])

        for field, value in changes.items():
            setattr(row, field, value)

        db.session.commit()
        self._table = None

        problems = validate_tier_table(self.list_tiers())
        if problems:
            current_app.logger.warning(
                f'Tier table for organization {self.organization_id} is now invalid '
                f'and will resolve with defaults: {"; ".join(problems)}'
            )
        return row


# Convenience for callers that only need a one-off resolution
def resolve_tier(organization_id: int, points: int) -> str:
    return TierService(organization_id).resolve_tier(points)
