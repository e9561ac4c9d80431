"""Tests for the music folder scan."""

from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beatcollector.application.services.filesystem_scan_service import (
    FilesystemScanService,
    discover_album_folders,
)
from beatcollector.domain.entities import AcquisitionSource, OwnershipStatus
from beatcollector.domain.exceptions import ConfigurationError
from beatcollector.infrastructure.persistence.models import AlbumModel, PlaylistModel


def make_album(root: Path, artist: str, album: str, files: int, ext: str = ".flac") -> Path:
    folder = root / artist / album
    folder.mkdir(parents=True)
    for i in range(files):
        (folder / f"{i + 1:02d} - Track{ext}").write_bytes(b"")
    return folder


class TestDiscoverAlbumFolders:
    def test_needs_three_audio_files(self, tmp_path: Path) -> None:
        make_album(tmp_path, "Bjork", "Post", 3)
        make_album(tmp_path, "Bjork", "Singles", 2)

        folders = discover_album_folders(tmp_path)

        assert [(f.artist_name, f.album_name, f.audio_files) for f in folders] == [
            ("Bjork", "Post", 3)
        ]

    def test_non_audio_files_do_not_count(self, tmp_path: Path) -> None:
        folder = make_album(tmp_path, "Bjork", "Homogenic", 2)
        (folder / "cover.jpg").write_bytes(b"")
        (folder / "notes.txt").write_text("x")

        assert discover_album_folders(tmp_path) == []

    def test_extension_is_case_insensitive(self, tmp_path: Path) -> None:
        make_album(tmp_path, "Bjork", "Debut", 3, ext=".MP3")

        assert len(discover_album_folders(tmp_path)) == 1

    def test_hidden_folders_ignored(self, tmp_path: Path) -> None:
        make_album(tmp_path, ".trash", "Old", 5)
        make_album(tmp_path, "Bjork", ".partial", 5)

        assert discover_album_folders(tmp_path) == []

    def test_loose_files_at_artist_level_ignored(self, tmp_path: Path) -> None:
        (tmp_path / "Bjork").mkdir()
        for i in range(4):
            (tmp_path / "Bjork" / f"{i}.mp3").write_bytes(b"")

        assert discover_album_folders(tmp_path) == []


class TestScan:
    async def test_missing_root_raises(
        self, session_factory: async_sessionmaker[AsyncSession], tmp_path: Path
    ) -> None:
        with pytest.raises(ConfigurationError):
            await FilesystemScanService(session_factory).scan(tmp_path / "nope")

    async def test_marks_matched_albums_owned(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: Any,
        tmp_path: Path,
    ) -> None:
        artist_id = await catalog.artist("Sigur Rós")
        takk = await catalog.album(artist_id, "Takk")
        kveikur = await catalog.album(artist_id, "Kveikur")
        folder = make_album(tmp_path, "Sigur Ros", "Takk", 11)
        make_album(tmp_path, "Aphex Twin", "Drukqs", 30)
        progress = AsyncMock()

        result = await FilesystemScanService(session_factory).scan(tmp_path, progress)

        assert result.folders_found == 2
        assert result.albums_matched == 1
        assert result.albums_newly_owned == 1
        assert result.unmatched == ["Aphex Twin/Drukqs"]
        progress.assert_awaited_once_with(2, 2)

        async with session_factory() as session:
            owned = await session.get(AlbumModel, takk)
            untouched = await session.get(AlbumModel, kveikur)
        assert owned is not None and untouched is not None
        assert owned.ownership_status is OwnershipStatus.OWNED
        assert owned.local_path == str(folder)
        assert owned.acquisition_source is AcquisitionSource.UNKNOWN
        assert untouched.ownership_status is OwnershipStatus.NOT_OWNED

    async def test_fuzzy_folder_name(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: Any,
        tmp_path: Path,
    ) -> None:
        artist_id = await catalog.artist("The Beatles")
        await catalog.album(artist_id, "Abbey Road")
        make_album(tmp_path, "The Beatles", "Abbey Road (Remaster)", 17)
        make_album(tmp_path, "The Beatle", "Abbey Road", 17)

        result = await FilesystemScanService(session_factory).scan(tmp_path)

        # "Abbey Road (Remaster)" is too far from "Abbey Road" at 0.80
        assert result.albums_matched == 1
        assert result.unmatched == ["The Beatles/Abbey Road (Remaster)"]

    async def test_rescan_keeps_owned_and_source(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: Any,
        tmp_path: Path,
    ) -> None:
        artist_id = await catalog.artist("Bjork")
        album_id = await catalog.album(artist_id, "Post", ownership=OwnershipStatus.OWNED)
        async with session_factory() as session:
            album = await session.get(AlbumModel, album_id)
            assert album is not None
            album.acquisition_source = AcquisitionSource.LIDARR
            await session.commit()
        make_album(tmp_path, "Bjork", "Post", 5)

        result = await FilesystemScanService(session_factory).scan(tmp_path)

        assert result.albums_matched == 1
        assert result.albums_newly_owned == 0
        async with session_factory() as session:
            album = await session.get(AlbumModel, album_id)
        assert album is not None
        assert album.acquisition_source is AcquisitionSource.LIDARR

    async def test_downloading_album_found_on_disk_becomes_owned(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: Any,
        tmp_path: Path,
    ) -> None:
        artist_id = await catalog.artist("Burial")
        album_id = await catalog.album(
            artist_id, "Untrue", ownership=OwnershipStatus.DOWNLOADING
        )
        make_album(tmp_path, "Burial", "Untrue", 13, ext=".mp3")

        result = await FilesystemScanService(session_factory).scan(tmp_path)

        assert result.albums_newly_owned == 1
        async with session_factory() as session:
            album = await session.get(AlbumModel, album_id)
        assert album is not None
        assert album.ownership_status is OwnershipStatus.OWNED

    async def test_playlist_counts_follow_scan(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: Any,
        tmp_path: Path,
    ) -> None:
        artist_id = await catalog.artist("Bjork")
        album_id = await catalog.album(artist_id, "Post")
        track_id = await catalog.track(album_id, "Army of Me")
        playlist_id = await catalog.playlist("pl", "Bjork mix", [track_id])
        make_album(tmp_path, "Bjork", "Post", 3)

        await FilesystemScanService(session_factory).scan(tmp_path)

        async with session_factory() as session:
            playlist = await session.get(PlaylistModel, playlist_id)
        assert playlist is not None
        assert playlist.owned_count == 1
