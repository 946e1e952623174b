"""
Tests for the MiniDLNA package list.
"""

import pytest

from dlnabuild.backends.autotools import AutotoolsBackend, MakefileBackend
from dlnabuild.backends.cmake import CMakeBackend
from dlnabuild.pipeline.packages import (
    FFMPEG_DECODERS,
    build_packages,
    ffmpeg_enable,
    ffmpeg_options,
)

ORDER = [
    "zlib",
    "bzip2",
    "sqlite-autoconf",
    "libogg",
    "libvorbis",
    "flac",
    "libid3tag",
    "libexif",
    "jpeg",
    "libpng",
    "ffmpeg",
    "ffmpegthumbnailer",
    "minidlna",
]


def by_name(packages):
    return {p.name: p for p in packages}


class TestBuildPackages:
    """Test build_packages."""

    def test_order(self, build_settings):
        assert [p.name for p in build_packages(build_settings)] == ORDER

    def test_every_archive_pinned(self, build_settings):
        for package in build_packages(build_settings):
            assert package.url.startswith("https://")
            assert len(package.sha256) == 64

    def test_source_names(self, build_settings):
        packages = by_name(build_packages(build_settings))

        assert packages["jpeg"].source_file == "jpegsrc.v9f.tar.gz"
        assert packages["jpeg"].source_subdir == "jpeg-9f"
        assert packages["zlib"].source_subdir == "zlib-1.3.1"

    def test_backends(self, build_settings):
        packages = by_name(build_packages(build_settings))

        assert isinstance(packages["bzip2"].backend, MakefileBackend)
        assert isinstance(packages["ffmpegthumbnailer"].backend, CMakeBackend)
        assert isinstance(packages["minidlna"].backend, AutotoolsBackend)
        assert packages["bzip2"].finalize == (
            "bin/bzip2",
            "bin/bunzip2",
            "bin/bzcat",
            "bin/bzip2recover",
        )
        assert packages["minidlna"].finalize == ("sbin/minidlnad",)

    def test_with_thumbnails(self, build_settings):
        build_settings.thumbnails_enabled = True
        packages = by_name(build_packages(build_settings))

        assert packages["libpng"].enabled
        assert packages["ffmpegthumbnailer"].enabled
        assert packages["ffmpeg"].patch_dirs == ("entware",)
        assert "--enable-swscale" in packages["ffmpeg"].backend.configure_args
        minidlna = packages["minidlna"]
        assert minidlna.patch_dirs == ("entware", "entware/solartracker")
        assert "--enable-thumbnail" in minidlna.backend.configure_args
        assert minidlna.backend.configure_env["LIBS"] == "-lbz2 -lavfilter -ljpeg -lstdc++"

    def test_without_thumbnails(self, build_settings):
        build_settings.thumbnails_enabled = False
        packages = by_name(build_packages(build_settings))

        assert not packages["libpng"].enabled
        assert not packages["ffmpegthumbnailer"].enabled
        assert packages["ffmpeg"].patch_dirs == ()
        assert "--disable-avfilter" in packages["ffmpeg"].backend.configure_args
        minidlna = packages["minidlna"]
        assert minidlna.patch_dirs == ("solartracker",)
        assert "--enable-thumbnail" not in minidlna.backend.configure_args
        assert minidlna.backend.configure_env["LIBS"] == "-lbz2"

    def test_ffmpeg_decoder_list(self, build_settings):
        args = by_name(build_packages(build_settings))["ffmpeg"].backend.configure_args

        for decoder in FFMPEG_DECODERS:
            assert f"--enable-decoder={decoder}" in args
        assert args.index("--disable-decoders") < args.index("--enable-decoder=aac")


class TestFfmpegHelpers:
    """Test the ffmpeg flag helpers."""

    def test_options(self):
        assert ffmpeg_options("--enable-parser", ["aac", "h264"]) == [
            "--enable-parser=aac",
            "--enable-parser=h264",
        ]

    @pytest.mark.parametrize("name,values", [("", ["aac"]), ("--enable-parser", [])])
    def test_options_rejects_empty(self, name, values):
        with pytest.raises(ValueError):
            ffmpeg_options(name, values)

    def test_enable(self):
        assert ffmpeg_enable(["avfilter"], True) == ["--enable-avfilter"]
        assert ffmpeg_enable(["avfilter", "swscale"], False) == [
            "--disable-avfilter",
            "--disable-swscale",
        ]

    def test_enable_rejects_empty(self):
        with pytest.raises(ValueError):
            ffmpeg_enable([], True)
