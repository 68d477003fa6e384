import pytest

from buzzcore.domain.common import errors
from buzzcore.domain.common.pairs import normalise_id, ordered_pair, pair_key, peer_of, split_pair
from buzzcore.domain.directory.models import Coordinates, UserSnapshot
from buzzcore.domain.geo import scoring

NOW = 1_000_000.0


def test_pair_key_is_order_independent():
	assert pair_key("bob", "alice") == pair_key("alice", "bob") == "alice_bob"
	assert ordered_pair("z", "a") == ("a", "z")
	assert split_pair("alice_bob") == ("alice", "bob")
	assert peer_of("alice_bob", "alice") == "bob"


def test_ids_with_separator_are_rejected():
	with pytest.raises(errors.ValidationError):
		normalise_id("al_ice")
	with pytest.raises(errors.ValidationError):
		normalise_id("   ")
	with pytest.raises(errors.ValidationError):
		split_pair("alice_bob_carol")
	with pytest.raises(errors.ValidationError) as exc:
		peer_of("alice_bob", "carol")
	assert exc.value.reason == "not_in_pair"


def test_coordinates_never_default_to_zero():
	with pytest.raises(errors.ValidationError):
		Coordinates.parse(None, 10)
	with pytest.raises(errors.ValidationError):
		Coordinates.parse(91, 0)
	with pytest.raises(errors.ValidationError):
		Coordinates.from_payload({"lat": 1})
	assert Coordinates.from_payload({"lat": "1.5", "lng": 2}).as_tuple() == (1.5, 2.0)


def test_midpoint_is_arithmetic_mean():
	point = scoring.midpoint(Coordinates(0, 0), Coordinates(2, 0))
	assert point.to_payload() == {"lat": 1.0, "lng": 0.0}


def test_haversine_one_degree_latitude():
	assert scoring.haversine_km(Coordinates(0, 0), Coordinates(1, 0)) == pytest.approx(111.19, abs=0.05)


@pytest.mark.parametrize(
	"km,text",
	[(0.0, "1 mile away"), (1.0, "1 mile away"), (20.0, "12 miles away"), (None, None)],
)
def test_distance_text(km, text):
	assert scoring.distance_text(km) == text


def test_radius_tiers_skip_smaller_tiers():
	assert scoring.radius_tiers(10, (25, 50, 100)) == [10, 25, 50, 100, None]
	assert scoring.radius_tiers(60, (25, 50, 100)) == [60, 100, None]


def test_activity_bucket_windows():
	assert scoring.activity_bucket(NOW - 60, NOW) == "active"
	assert scoring.activity_bucket(NOW - 30 * 60, NOW) == "recent"
	assert scoring.activity_bucket(NOW - 2 * 3600, NOW) is None
	assert scoring.activity_bucket(None, NOW) is None


def test_hybrid_score_components_and_caps():
	me = UserSnapshot(
		id="me",
		intent="dating",
		vibe="chill",
		interests=("a", "b", "c", "d", "e"),
		hobbies=("x", "y", "z", "w"),
	)
	them = UserSnapshot(
		id="them",
		intent="Dating",
		vibe="CHILL",
		interests=("A", "b", "c", "d", "e"),
		hobbies=("x", "y", "z", "w"),
		last_active_at=NOW - 10,
		verified=True,
	)
	score = scoring.hybrid_score(me, them, 0.0, now=NOW)
	# proximity .5 + intent .2 + vibe .1 + interests .15 + hobbies .09 + active .1 + verified .05
	assert score == pytest.approx(1.19)


def test_hybrid_score_without_distance_has_no_proximity_term():
	me = UserSnapshot(id="me")
	them = UserSnapshot(id="them")
	assert scoring.hybrid_score(me, them, None, now=NOW) == 0.0
	assert scoring.hybrid_score(me, them, 150.0, now=NOW) == 0.0


def test_pool_within_excludes_unlocated_until_global():
	origin = Coordinates(0, 0)
	near = UserSnapshot(id="near", location=Coordinates(0.01, 0))
	nowhere = UserSnapshot(id="nowhere")
	assert [user.id for user, _ in scoring.pool_within(origin, [near, nowhere], 10)] == ["near"]
	pooled = scoring.pool_within(origin, [near, nowhere], None)
	assert {user.id: distance is None for user, distance in pooled} == {"near": False, "nowhere": True}


def test_rank_breaks_ties_by_distance_then_recency():
	me = UserSnapshot(id="me")
	far = UserSnapshot(id="far", last_active_at=NOW - 7200)
	close = UserSnapshot(id="close", last_active_at=NOW - 7200)
	unknown_old = UserSnapshot(id="unknown-old", last_active_at=NOW - 9000)
	unknown_new = UserSnapshot(id="unknown-new", last_active_at=NOW - 8000)
	ranked = scoring.rank(
		me,
		[(far, 150.0), (unknown_old, None), (close, 120.0), (unknown_new, None)],
		now=NOW,
	)
	assert [item.user.id for item in ranked] == ["close", "far", "unknown-new", "unknown-old"]
