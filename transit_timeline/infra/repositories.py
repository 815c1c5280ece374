"""
Repositories pour les profils natals et les timelines.

Ce module fournit des implémentations de repositories avec des versions en mémoire (dev/tests)
et Redis (multi-instances).
"""

import threading

from transit_timeline.domain.entities import NatalProfile, Timeline
from transit_timeline.infra.redis_store import RedisRepo


class InMemoryNatalProfileRepo:
    """
    Dépôt de profils nataux en mémoire (utilisé pour dev/tests).

    Stocke les profils dans un dict local, non persistant.
    """

    def __init__(self):
        """Initialise une base mémoire vide."""
        self._db: dict[str, NatalProfile] = {}

    def save(self, profile: NatalProfile) -> NatalProfile:
        """Enregistre/écrase le profil de l'utilisateur et le renvoie."""
        self._db[profile.user_id] = profile
        return profile

    def get(self, user_id: str) -> NatalProfile | None:
        """Retourne le profil de `user_id`, ou None s'il est absent."""
        return self._db.get(user_id)


class RedisNatalProfileRepo(RedisRepo):
    """Dépôt de profils natals adossé à Redis (clé: `natal:{user_id}`)."""

    def save(self, profile: NatalProfile) -> NatalProfile:
        """Sérialise en JSON et stocke le profil sous `natal:{user_id}`."""
        payload = profile.model_dump_json()
        self._io("natal.save", lambda: self.client.set(f"natal:{profile.user_id}", payload))
        return profile

    def get(self, user_id: str) -> NatalProfile | None:
        raw = self._io("natal.get", lambda: self.client.get(f"natal:{user_id}"))
        return NatalProfile.model_validate_json(raw) if raw else None


class InMemoryTimelineRepo:
    """Dépôt de timelines en mémoire, indexé par propriétaire."""

    def __init__(self):
        self._db: dict[str, Timeline] = {}
        self._lock = threading.Lock()

    def save(self, timeline: Timeline) -> Timeline:
        with self._lock:
            self._db[timeline.id] = timeline
        return timeline

    def get(self, timeline_id: str) -> Timeline | None:
        return self._db.get(timeline_id)

    def list_for_owner(self, owner_id: str) -> list[Timeline]:
        """Timelines du propriétaire, la plus récente d'abord."""
        with self._lock:
            items = [t for t in self._db.values() if t.owner_id == owner_id]
        return sorted(items, key=lambda t: t.created_at, reverse=True)

    def delete(self, timeline_id: str) -> bool:
        with self._lock:
            return self._db.pop(timeline_id, None) is not None


class RedisTimelineRepo(RedisRepo):
    """Dépôt de timelines via Redis avec index propriétaire -> ids (set)."""

    @staticmethod
    def _key(timeline_id: str) -> str:
        return f"timeline:{timeline_id}"

    @staticmethod
    def _owner_key(owner_id: str) -> str:
        return f"timeline:idx:owner:{owner_id}"

    def save(self, timeline: Timeline) -> Timeline:
        """Sauvegarde la timeline et met à jour l'index propriétaire."""
        payload = timeline.model_dump_json()

        def _write():
            pipe = self.client.pipeline()
            pipe.set(self._key(timeline.id), payload)
            pipe.sadd(self._owner_key(timeline.owner_id), timeline.id)
            pipe.execute()

        self._io("timeline.save", _write)
        return timeline

    def get(self, timeline_id: str) -> Timeline | None:
        raw = self._io("timeline.get", lambda: self.client.get(self._key(timeline_id)))
        return Timeline.model_validate_json(raw) if raw else None

    def list_for_owner(self, owner_id: str) -> list[Timeline]:
        ids = sorted(
            self._io("timeline.index", lambda: self.client.smembers(self._owner_key(owner_id)))
        )
        if not ids:
            return []
        raws = self._io("timeline.mget", lambda: self.client.mget([self._key(i) for i in ids]))
        items = [Timeline.model_validate_json(r) for r in raws if r]
        return sorted(items, key=lambda t: t.created_at, reverse=True)

    def delete(self, timeline_id: str) -> bool:
        timeline = self.get(timeline_id)
        if timeline is None:
            return False

        def _remove():
            pipe = self.client.pipeline()
            pipe.delete(self._key(timeline_id))
            pipe.srem(self._owner_key(timeline.owner_id), timeline_id)
            pipe.execute()

        self._io("timeline.delete", _remove)
        return True
