"""
Tests for the tier resolver.

Tests cover:
- Default table resolution and threshold boundaries
- Custom tier tables
- Fallback to defaults for invalid custom tables
- Tier table validation
- Initialization and admin edits
"""
import pytest


def add_tiers(organization_id, rows):
    from loyalty_engine.extensions import db
    from loyalty_engine.models import LoyaltyTier

    for tier, min_points in rows:
        db.session.add(LoyaltyTier(
            organization_id=organization_id,
            tier=tier,
            name=tier.title(),
            min_points=min_points,
            benefits=[]
        ))
    db.session.commit()


class TestDefaultTierResolution:
    """Tests for resolution with the built-in table."""

    def test_no_custom_rows_uses_defaults(self, app, sample_organization):
        """Test 1600 points resolves to GOLD with the default table."""
        from loyalty_engine.services.tier_service import TierService

        service = TierService(sample_organization.id)

        assert service.resolve_tier(1600) == 'GOLD'
        assert service.load_tier_table().source == 'default'

    @pytest.mark.parametrize('points,expected', [
        (0, 'BRONZE'),
        (150, 'BRONZE'),
        (499, 'BRONZE'),
        (500, 'SILVER'),
        (1499, 'SILVER'),
        (1500, 'GOLD'),
        (2999, 'GOLD'),
        (3000, 'PLATINUM'),
        (4999, 'PLATINUM'),
        (5000, 'DIAMOND'),
        (250000, 'DIAMOND'),
    ])
    def test_threshold_boundaries(self, app, sample_organization, points, expected):
        """Test the highest threshold at or below the points wins."""
        from loyalty_engine.services.tier_service import TierService

        assert TierService(sample_organization.id).resolve_tier(points) == expected

    def test_module_level_resolve(self, app, sample_organization):
        """Test the one-off resolve_tier helper."""
        from loyalty_engine.services.tier_service import resolve_tier

        assert resolve_tier(sample_organization.id, 3100) == 'PLATINUM'

    @pytest.mark.parametrize('ladder', [
        None,
        [('BRONZE', 0), ('SILVER', 100), ('GOLD', 400)],
        [('BRONZE', 0), ('SILVER', 250), ('GOLD', 1000), ('PLATINUM', 2500), ('DIAMOND', 4000)],
    ])
    def test_tier_correctness_property(self, app, sample_organization, ladder):
        """Test no tier sits between the resolved threshold and the points."""
        from loyalty_engine.services.tier_service import TierService

        if ladder:
            add_tiers(sample_organization.id, ladder)

        service = TierService(sample_organization.id)
        table = service.load_tier_table()
        assert table.is_custom == bool(ladder)

        for points in range(0, 6000, 37):
            resolved = table.resolve(points)
            assert resolved.min_points <= points
            assert not any(resolved.min_points < t.min_points <= points for t in table.thresholds)
            assert service.resolve_tier(points) == resolved.tier


class TestCustomTierTables:
    """Tests for organization-defined tier tables."""

    def test_custom_table_used_when_valid(self, app, sample_organization):
        """Test a valid custom ladder overrides the defaults."""
        from loyalty_engine.services.tier_service import TierService

        add_tiers(sample_organization.id, [('BRONZE', 0), ('SILVER', 100), ('GOLD', 400)])
        service = TierService(sample_organization.id)

        assert service.load_tier_table().is_custom
        assert service.resolve_tier(150) == 'SILVER'
        assert service.resolve_tier(10000) == 'GOLD'

    def test_missing_bronze_falls_back_entirely(self, app, sample_organization):
        """Test a table without BRONZE is ignored, not mixed."""
        from loyalty_engine.services.tier_service import TierService

        add_tiers(sample_organization.id, [('SILVER', 100), ('GOLD', 400)])
        service = TierService(sample_organization.id)

        assert service.load_tier_table().source == 'default'
        assert service.resolve_tier(450) == 'BRONZE'
        assert service.resolve_tier(1600) == 'GOLD'

    def test_out_of_order_thresholds_fall_back(self, app, sample_organization):
        """Test SILVER above GOLD is treated as corrupt."""
        from loyalty_engine.services.tier_service import TierService

        add_tiers(sample_organization.id, [('BRONZE', 0), ('SILVER', 900), ('GOLD', 400)])

        assert TierService(sample_organization.id).load_tier_table().source == 'default'

    def test_table_cached_per_instance(self, app, sample_organization):
        """Test the table is loaded once until refreshed."""
        from loyalty_engine.services.tier_service import TierService

        service = TierService(sample_organization.id)
        assert service.load_tier_table().source == 'default'

        add_tiers(sample_organization.id, [('BRONZE', 0), ('SILVER', 10)])

        assert service.load_tier_table().source == 'default'
        assert service.load_tier_table(refresh=True).source == 'custom'


class TestValidateTierTable:
    """Tests for validate_tier_table."""

    def test_valid_table(self):
        """Test a proper ladder has no problems."""
        from loyalty_engine.services.tier_service import validate_tier_table, DEFAULT_TIERS

        assert validate_tier_table(DEFAULT_TIERS) == []

    def test_empty_table(self):
        """Test an empty table is reported."""
        from loyalty_engine.services.tier_service import validate_tier_table

        assert validate_tier_table([]) == ['Tier table is empty']

    def test_duplicate_thresholds(self):
        """Test equal thresholds are not strictly increasing."""
        from loyalty_engine.services.tier_service import validate_tier_table

        problems = validate_tier_table([
            {'tier': 'BRONZE', 'min_points': 0},
            {'tier': 'SILVER', 'min_points': 500},
            {'tier': 'GOLD', 'min_points': 500},
        ])
        assert 'Thresholds must be strictly increasing' in problems

    def test_unknown_and_duplicate_levels(self):
        """Test unknown and repeated tier names are reported."""
        from loyalty_engine.services.tier_service import validate_tier_table

        problems = validate_tier_table([
            {'tier': 'BRONZE', 'min_points': 0},
            {'tier': 'COPPER', 'min_points': 100},
            {'tier': 'BRONZE', 'min_points': 200},
        ])
        assert any('COPPER' in p for p in problems)
        assert 'Duplicate tier levels' in problems

    def test_bronze_must_start_at_zero(self):
        """Test BRONZE above zero is rejected."""
        from loyalty_engine.services.tier_service import validate_tier_table

        problems = validate_tier_table([
            {'tier': 'BRONZE', 'min_points': 10},
            {'tier': 'SILVER', 'min_points': 500},
        ])
        assert 'BRONZE must be the lowest tier with a threshold of 0' in problems


class TestTierAdministration:
    """Tests for initialization, progress and edits."""

    def test_initialize_tiers_once(self, app, sample_organization):
        """Test default rows are written once."""
        from loyalty_engine.services.tier_service import TierService

        service = TierService(sample_organization.id)

        assert service.initialize_tiers() == {'created': 5, 'existing': 0}
        assert service.initialize_tiers() == {'created': 0, 'existing': 5}
        assert service.load_tier_table().is_custom

    def test_next_tier_progress(self, app, sample_organization):
        """Test progress reports the points still needed."""
        from loyalty_engine.services.tier_service import TierService

        progress = TierService(sample_organization.id).next_tier_progress(1600)

        assert progress['current_tier'] == 'GOLD'
        assert progress['next_tier'] == 'PLATINUM'
        assert progress['points_to_next_tier'] == 1400
        assert progress['is_top_tier'] is False

    def test_next_tier_progress_top_tier(self, app, sample_organization):
        """Test DIAMOND has no next tier."""
        from loyalty_engine.services.tier_service import TierService

        progress = TierService(sample_organization.id).next_tier_progress(9000)

        assert progress['current_tier'] == 'DIAMOND'
        assert progress['next_tier'] is None
        assert progress['is_top_tier'] is True

    def test_create_tier_rejects_unknown_level(self, app, sample_organization):
        """Test an unknown tier name raises ValidationError."""
        from loyalty_engine.services.tier_service import TierService
        from loyalty_engine.utils.exceptions import ValidationError

        with pytest.raises(ValidationError):
            TierService(sample_organization.id).create_tier({'tier': 'COPPER', 'min_points': 5})

    def test_create_tier_rejects_duplicate(self, app, sample_organization):
        """Test a second row for the same level is rejected."""
        from loyalty_engine.services.tier_service import TierService
        from loyalty_engine.utils.exceptions import ValidationError

        service = TierService(sample_organization.id)
        service.create_tier({'tier': 'bronze', 'min_points': 0})

        with pytest.raises(ValidationError):
            service.create_tier({'tier': 'BRONZE', 'min_points': 0})

    def test_update_tier_changes_resolution(self, app, sample_organization):
        """Test lowering a threshold takes effect on the next resolution."""
        from loyalty_engine.services.tier_service import TierService

        service = TierService(sample_organization.id)
        service.initialize_tiers()
        service.update_tier('SILVER', {'min_points': 300})

        assert service.resolve_tier(350) == 'SILVER'

    def test_update_missing_tier(self, app, sample_organization):
        """Test updating a tier with no row raises NotFoundError."""
        from loyalty_engine.services.tier_service import TierService
        from loyalty_engine.utils.exceptions import NotFoundError

        with pytest.raises(NotFoundError):
            TierService(sample_organization.id).update_tier('GOLD', {'min_points': 10})

    @pytest.mark.parametrize('value,expected', [(0, 0), ('750', 750), (1200.0, 1200)])
    def test_parse_min_points(self, value, expected):
        """Test whole numbers and numeric strings are accepted."""
        from loyalty_engine.services.tier_service import parse_min_points

        assert parse_min_points(value) == expected

    @pytest.mark.parametrize('value', ['abc', None, -1, 2.5, True, [100]])
    def test_parse_min_points_rejects(self, value):
        """Test junk and negative thresholds raise ValidationError."""
        from loyalty_engine.services.tier_service import parse_min_points
        from loyalty_engine.utils.exceptions import ValidationError

        with pytest.raises(ValidationError) as exc_info:
            parse_min_points(value)

        assert exc_info.value.code == 'INVALID_MIN_POINTS'

    @pytest.mark.parametrize('value', ['x', 'Infinity', -0.5, False])
    def test_parse_points_per_dollar_rejects(self, value):
        """Test non-numeric, infinite and negative rates raise ValidationError."""
        from loyalty_engine.services.tier_service import parse_points_per_dollar
        from loyalty_engine.utils.exceptions import ValidationError

        with pytest.raises(ValidationError):
            parse_points_per_dollar(value)

    def test_update_tier_bad_input_changes_nothing(self, app, sample_organization):
        """Test a rejected update leaves every field of the row as it was."""
        from loyalty_engine.extensions import db
        from loyalty_engine.models import LoyaltyTier
        from loyalty_engine.services.tier_service import TierService
        from loyalty_engine.utils.exceptions import ValidationError

        service = TierService(sample_organization.id)
        service.initialize_tiers()

        with pytest.raises(ValidationError):
            service.update_tier('SILVER', {'name': 'Argent', 'min_points': 'soon'})

        db.session.commit()
        silver = LoyaltyTier.query.filter_by(tier='SILVER').one()
        assert silver.name == 'Silver'
        assert silver.min_points == 500
