"""HTTP API for the sample object and user stores."""

from __future__ import annotations

import json
from typing import Any, Optional

from flask import Flask, jsonify, request

from netassist.models import GameObject, NotFoundError, ObjectStore, Profile, User, UserStore


def _lookup(data: dict, name: str) -> Any:
    """Find ``name`` in ``data``, exactly first, then ignoring case."""
    if name in data:
        return data[name]
    lowered = name.lower()
    return next(
        (value for key, value in data.items() if isinstance(key, str) and key.lower() == lowered),
        None,
    )


def _text(data: dict, name: str) -> str:
    value = _lookup(data, name)
    return value if isinstance(value, str) else ""


def _number(data: dict, name: str) -> int:
    value = _lookup(data, name)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def _request_body() -> dict:
    """The request body as a JSON object; anything else counts as empty."""
    raw = request.get_data()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _decode_object(data: dict) -> GameObject:
    return GameObject(
        object_id=_text(data, "ObjectId"),
        score=_number(data, "Score"),
        player_name=_text(data, "PlayerName"),
    )


def _decode_user(data: dict) -> User:
    raw_profile = _lookup(data, "Profile")
    profile_data = raw_profile if isinstance(raw_profile, dict) else {}
    return User(
        id=_text(data, "Id"),
        username=_text(data, "Username"),
        password=_text(data, "Password"),
        profile=Profile(
            gender=_text(profile_data, "Gender"),
            age=_number(profile_data, "Age"),
            address=_text(profile_data, "Address"),
            email=_text(profile_data, "Email"),
        ),
    )


def _object_json(obj: GameObject) -> dict:
    return {"ObjectId": obj.object_id, "Score": obj.score, "PlayerName": obj.player_name}


def _user_json(user: User) -> dict:
    return {
        "Id": user.id,
        "Username": user.username,
        "Password": user.password,
        "Profile": {
            "Gender": user.profile.gender,
            "Age": user.profile.age,
            "Address": user.profile.address,
            "Email": user.profile.email,
        },
    }


def create_app(
    object_store: Optional[ObjectStore] = None,
    user_store: Optional[UserStore] = None,
) -> Flask:
    """Build the Flask application serving ``/v1/object`` and ``/v1/user``."""
    objects = object_store if object_store is not None else ObjectStore()
    users = user_store if user_store is not None else UserStore()

    app = Flask(__name__)
    app.url_map.strict_slashes = False

    @app.route("/v1/object/", methods=["POST"])
    def create_object():
        object_id = objects.add(_decode_object(_request_body()))
        return jsonify({"ObjectId": object_id})

    @app.route("/v1/object/", methods=["GET"])
    def list_objects():
        return jsonify({key: _object_json(obj) for key, obj in objects.all().items()})

    @app.route("/v1/object/<object_id>", methods=["GET"])
    def get_object(object_id: str):
        try:
            return jsonify(_object_json(objects.get(object_id)))
        except NotFoundError as exc:
            return jsonify(str(exc))

    @app.route("/v1/object/<object_id>", methods=["PUT"])
    def update_object(object_id: str):
        changes = _decode_object(_request_body())
        try:
            objects.update(object_id, changes.score)
        except NotFoundError as exc:
            return jsonify(str(exc))
        return jsonify("update success!")

    @app.route("/v1/object/<object_id>", methods=["DELETE"])
    def delete_object(object_id: str):
        objects.delete(object_id)
        return jsonify("delete success!")

    @app.route("/v1/user/", methods=["POST"])
    def create_user():
        uid = users.add(_decode_user(_request_body()))
        return jsonify({"uid": uid})

    @app.route("/v1/user/", methods=["GET"])
    def list_users():
        return jsonify({key: _user_json(user) for key, user in users.all().items()})

    @app.route("/v1/user/login", methods=["GET"])
    def login():
        username = request.args.get("username", "")
        password = request.args.get("password", "")
        if users.login(username, password):
            return jsonify("login success")
        return jsonify("user not exist")

    @app.route("/v1/user/logout", methods=["GET"])
    def logout():
        return jsonify("logout success")

    @app.route("/v1/user/<uid>", methods=["GET"])
    def get_user(uid: str):
        try:
            return jsonify(_user_json(users.get(uid)))
        except NotFoundError as exc:
            return jsonify(str(exc))

    @app.route("/v1/user/<uid>", methods=["PUT"])
    def update_user(uid: str):
        try:
            updated = users.update(uid, _decode_user(_request_body()))
        except NotFoundError as exc:
            return jsonify(str(exc))
        return jsonify(_user_json(updated))

    @app.route("/v1/user/<uid>", methods=["DELETE"])
    def delete_user(uid: str):
        users.delete(uid)
        return jsonify("delete success!")

    return app