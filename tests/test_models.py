import pytest

from netassist.models import (
    GameObject,
    NotFoundError,
    ObjectStore,
    Profile,
    User,
    UserStore,
)


def test_object_store_is_seeded():
    store = ObjectStore()
    obj = store.get("hjkhsbnmn123")
    assert obj.score == 100
    assert obj.player_name == "astaxie"
    assert set(store.all()) == {"hjkhsbnmn123", "mjjkxsxsaa23"}


def test_object_store_without_seed_is_empty():
    assert ObjectStore(seed=False).all() == {}


def test_add_object_assigns_prefixed_id_and_copies():
    store = ObjectStore()
    original = GameObject(object_id="ignored", score=7, player_name="bob")
    object_id = store.add(original)
    assert object_id.startswith("astaxie")
    stored = store.get(object_id)
    assert stored.score == 7
    assert stored.player_name == "bob"
    assert stored.object_id == object_id
    assert original.object_id == "ignored"


def test_add_object_ids_are_unique():
    store = ObjectStore(seed=False)
    ids = {store.add(GameObject(score=i)) for i in range(20)}
    assert len(ids) == 20
    assert len(store.all()) == 20


def test_get_missing_object_raises():
    with pytest.raises(NotFoundError, match="ObjectId Not Exist"):
        ObjectStore().get("nope")


def test_update_object_score():
    store = ObjectStore()
    store.update("mjjkxsxsaa23", 55)
    assert store.get("mjjkxsxsaa23").score == 55


def test_update_missing_object_raises():
    with pytest.raises(NotFoundError, match="ObjectId Not Exist"):
        ObjectStore().update("nope", 1)


def test_delete_object():
    store = ObjectStore()
    store.delete("hjkhsbnmn123")
    assert list(store.all()) == ["mjjkxsxsaa23"]
    store.delete("hjkhsbnmn123")
    assert len(store.all()) == 1


def test_all_returns_snapshot():
    store = ObjectStore()
    snapshot = store.all()
    snapshot.clear()
    assert len(store.all()) == 2


def test_stores_are_independent():
    first, second = ObjectStore(), ObjectStore()
    first.delete("hjkhsbnmn123")
    assert "hjkhsbnmn123" in second.all()


def test_user_store_is_seeded_and_login_works():
    store = UserStore()
    user = store.get("user_11111")
    assert user.username == "astaxie"
    assert user.profile.address == "Singapore"
    password = "password"
    assert store.login("astaxie", password) is True
    assert store.login("astaxie", "secret") is False
    assert store.login("nobody", password) is False


def test_add_user_assigns_prefixed_id():
    store = UserStore()
    password = "password"
    uid = store.add(User(username="carol", password=password))
    assert uid.startswith("user_")
    assert store.get(uid).username == "carol"
    assert store.login("carol", password) is True
    assert len(store.all()) == 2


def test_get_missing_user_raises():
    with pytest.raises(NotFoundError, match="User not exists"):
        UserStore().get("nope")


def test_update_user_only_overrides_non_empty_fields():
    store = UserStore()
    changes = User(username="newname", profile=Profile(age=33, email="new@example.com"))
    updated = store.update("user_11111", changes)
    assert updated.username == "newname"
    assert updated.profile.age == 33
    assert updated.profile.email == "new@example.com"
    assert updated.profile.gender == "male"
    assert updated.profile.address == "Singapore"
    password = "password"
    assert store.login("newname", password) is True


def test_update_missing_user_raises():
    with pytest.raises(NotFoundError, match="User Not Exist"):
        UserStore().update("nope", User())


def test_delete_user():
    store = UserStore()
    store.delete("user_11111")
    assert store.all() == {}
    with pytest.raises(NotFoundError):
        store.get("user_11111")