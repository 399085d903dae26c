from __future__ import annotations

import pytest

from cryptoflash.services.preferences import DEFAULT_THEME, PreferencesService, theme_key


class TestLocalStore:
    @pytest.mark.asyncio
    async def test_roundtrip_and_default(self, local_store):
        assert await local_store.get("missing", default=[]) == []

        await local_store.set("alerts:a", [{"id": "x"}])
        await local_store.set("alerts:a", [{"id": "y"}])

        assert await local_store.get("alerts:a") == [{"id": "y"}]

        await local_store.delete("alerts:a")
        assert await local_store.get("alerts:a") is None


class TestPreferences:
    @pytest.mark.asyncio
    async def test_theme_defaults_to_dark(self, local_store):
        prefs = PreferencesService("alice", local_store)

        assert await prefs.get_theme() == DEFAULT_THEME == "dark"

    @pytest.mark.asyncio
    async def test_theme_persisted(self, local_store):
        prefs = PreferencesService("alice", local_store)

        await prefs.set_theme("light")

        assert await PreferencesService("alice", local_store).get_theme() == "light"
        assert await PreferencesService("bob", local_store).get_theme() == "dark"

    @pytest.mark.asyncio
    async def test_unknown_theme_rejected_and_ignored(self, local_store):
        prefs = PreferencesService("alice", local_store)

        with pytest.raises(ValueError):
            await prefs.set_theme("neon")
        await local_store.set(theme_key("alice"), "sepia")

        assert await prefs.get_theme() == "dark"
