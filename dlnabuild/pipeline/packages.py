"""
The MiniDLNA dependency chain, in build order.

Each entry pins the upstream archive by SHA-256 and carries the flags that
make it build as a static library for the target. Order matters: every
stage links against what the stages before it installed into the prefix.
"""

import logging
from typing import Iterable, List

from dlnabuild.backends.autotools import AutotoolsBackend, MakefileBackend
from dlnabuild.backends.cmake import CMakeBackend
from dlnabuild.config.settings import BuildSettings
from dlnabuild.pipeline.descriptor import FileCopy, PackageDescriptor, PostInstallCopy

logger = logging.getLogger(__name__)

# Common configure flags for static-only autotools libraries.
STATIC_ONLY = ("--enable-static", "--disable-shared")
PREFIX_HOST = ("--prefix={prefix}", "--host={host}")

FFMPEG_DECODERS = (
    "aac ac3 atrac3 h264 jpegls mp3 mpeg1video mpeg2video mpeg4 mpegvideo png "
    "wmav1 wmav2 svq3"
).split()
FFMPEG_PARSERS = "aac ac3 h264 mpeg4video mpegaudio mpegvideo".split()
FFMPEG_PROTOCOLS = ["file"]
FFMPEG_DISABLED_DEMUXERS = (
    "amr apc ape ass bethsoftvid bfi c93 daud dnxhd dsicin dxa gsm gxf idcin iff "
    "image2 image2pipe ingenient ipmovie lmlm4 mm mmf msnwc_tcp mtv mxf nsv nut oma "
    "pva rawvideo rl2 roq rpl segafilm shorten siff smacker sol str thp tiertexseq "
    "tta txd vmd voc wc3 wsaud wsvqa xa yuv4mpegpipe"
).split()

# Replacement for musl's missing <sys/queue.h>.
QUEUE_H = "solartracker/uclibc-ng+git-bc4bc07d931992388822fa301e34718acbec02c9/include/sys/queue.h"


def ffmpeg_options(name: str, values: Iterable[str]) -> List[str]:
    """
    One "<name>=<value>" argument per value.

    >>> ffmpeg_options("--enable-parser", ["aac", "h264"])
    ['--enable-parser=aac', '--enable-parser=h264']

    Raises:
        ValueError: If name or values is empty
    """
    values = list(values)
    if not name or not values:
        raise ValueError("ffmpeg_options needs an option name and at least one value")
    return [f"{name}={value}" for value in values]


def ffmpeg_enable(names: Iterable[str], enabled: bool) -> List[str]:
    """
    "--enable-<name>" or "--disable-<name>" for each name.

    >>> ffmpeg_enable(["avfilter", "swscale"], False)
    ['--disable-avfilter', '--disable-swscale']
    """
    names = list(names)
    if not names:
        raise ValueError("ffmpeg_enable needs at least one component name")
    verb = "enable" if enabled else "disable"
    return [f"--{verb}-{name}" for name in names]


def _ffmpeg_configure_args(thumbnails: bool) -> List[str]:
    return [
        "--arch=arm",
        "--target-os=linux",
        "--disable-neon",
        "--disable-vfp",
        "--disable-asm",
        "--enable-cross-compile",
        "--cross-prefix={cross_prefix}",
        "--sysroot={sysroot}",
        *STATIC_ONLY,
        "--disable-rpath",
        "--disable-debug",
        "--disable-doc",
        "--enable-gpl",
        "--enable-version3",
        "--enable-nonfree",
        "--enable-pthreads",
        "--enable-small",
        *ffmpeg_enable(["avfilter", "swscale"], thumbnails),
        "--disable-ffmpeg",
        "--disable-ffplay",
        "--disable-ffprobe",
        "--disable-encoders",
        "--disable-filters",
        "--disable-muxers",
        "--disable-devices",
        "--disable-avdevice",
        "--disable-hwaccels",
        "--disable-network",
        "--disable-bsfs",
        "--enable-demuxers",
        *ffmpeg_options("--disable-demuxer", FFMPEG_DISABLED_DEMUXERS),
        "--disable-decoders",
        *ffmpeg_options("--enable-decoder", FFMPEG_DECODERS),
        "--disable-parsers",
        *ffmpeg_options("--enable-parser", FFMPEG_PARSERS),
        "--disable-protocols",
        *ffmpeg_options("--enable-protocol", FFMPEG_PROTOCOLS),
        "--enable-zlib",
        "--prefix={prefix}",
    ]


def _minidlna(thumbnails: bool) -> PackageDescriptor:
    configure_args = ["--enable-static", "--disable-rpath", "--disable-nls"]
    if thumbnails:
        configure_args.append("--enable-thumbnail")
        libs = "-lbz2 -lavfilter -ljpeg -lstdc++"
        patch_dirs = ("entware", "entware/solartracker")
    else:
        libs = "-lbz2"
        patch_dirs = ("solartracker",)
    configure_args.extend(PREFIX_HOST)

    return PackageDescriptor(
        name="minidlna",
        version="1.3.3",
        source_file="minidlna-1.3.3.tar.gz",
        url="https://downloads.sourceforge.net/project/minidlna/minidlna/1.3.3/minidlna-1.3.3.tar.gz",
        sha256="39026c6d4a139b9180192d1c37225aa3376fdf4f1a74d7debbdbb693d996afa4",
        patch_dirs=patch_dirs,
        prefix_files=(FileCopy(QUEUE_H, "include/sys/"),),
        backend=AutotoolsBackend(configure_args, configure_env={"LIBS": libs}),
        finalize=("sbin/minidlnad",),
    )


def build_packages(settings: BuildSettings) -> List[PackageDescriptor]:
    """
    Every stage of the build, in order.

    libpng and ffmpegthumbnailer are only enabled with thumbnail support;
    ffmpeg and minidlna change their flags and patch sets with it.
    """
    thumbnails = settings.thumbnails_enabled
    logger.debug(f"Thumbnail support {'enabled' if thumbnails else 'disabled'}")

    return [
        PackageDescriptor(
            name="zlib",
            version="1.3.1",
            source_file="zlib-1.3.1.tar.xz",
            url="https://github.com/madler/zlib/releases/download/v1.3.1/zlib-1.3.1.tar.xz",
            sha256="38ef96b8dfe510d42707d9c781877914792541133e1870841463bfa73f883e32",
            backend=AutotoolsBackend(["--static", "--prefix={prefix}"]),
        ),
        PackageDescriptor(
            name="bzip2",
            version="1.0.8",
            source_file="bzip2-1.0.8.tar.gz",
            url="https://sourceware.org/pub/bzip2/bzip2-1.0.8.tar.gz",
            sha256="ab5a03176ee106d3f0fa90e381da478ddae405918153cca248e682cd0c4a2269",
            backend=MakefileBackend(
                targets=["bzip2", "bzip2recover", "libbz2.a"],
                extra_cflags="-static",
                install_args=["PREFIX={prefix}"],
            ),
            finalize=("bin/bzip2", "bin/bunzip2", "bin/bzcat", "bin/bzip2recover"),
        ),
        PackageDescriptor(
            name="sqlite-autoconf",
            version="3510200",
            source_file="sqlite-autoconf-3510200.tar.gz",
            url="https://sqlite.org/2026/sqlite-autoconf-3510200.tar.gz",
            sha256="fbd89f866b1403bb66a143065440089dd76100f2238314d92274a082d4f2b7bb",
            backend=AutotoolsBackend(
                [*PREFIX_HOST, "--disable-shared", "--enable-static", "--disable-rpath"]
            ),
        ),
        PackageDescriptor(
            name="libogg",
            version="1.3.6",
            source_file="libogg-1.3.6.tar.gz",
            url="https://ftp.osuosl.org/pub/xiph/releases/ogg/libogg-1.3.6.tar.gz",
            sha256="83e6704730683d004d20e21b8f7f55dcb3383cdf84c0daedf30bde175f774638",
            backend=AutotoolsBackend([*STATIC_ONLY, *PREFIX_HOST]),
        ),
        PackageDescriptor(
            name="libvorbis",
            version="1.3.7",
            source_file="libvorbis-1.3.7.tar.gz",
            url="https://ftp.osuosl.org/pub/xiph/releases/vorbis/libvorbis-1.3.7.tar.gz",
            sha256="0e982409a9c3fc82ee06e08205b1355e5c6aa4c36bca58146ef399621b0ce5ab",
            backend=AutotoolsBackend([*STATIC_ONLY, "--disable-oggtest", *PREFIX_HOST]),
        ),
        PackageDescriptor(
            name="flac",
            version="1.5.0",
            source_file="flac-1.5.0.tar.xz",
            url="https://ftp.osuosl.org/pub/xiph/releases/flac/flac-1.5.0.tar.xz",
            sha256="f2c1c76592a82ffff8413ba3c4a1299b6c7ab06c734dee03fd88630485c2b920",
            backend=AutotoolsBackend(
                [
                    *STATIC_ONLY,
                    "--disable-rpath",
                    "--disable-doxygen-docs",
                    "--disable-cpplibs",
                    "--disable-avx",
                    "--disable-stack-smash-protection",
                    "--disable-oggtest",
                    "--disable-examples",
                    "--without-libiconv-prefix",
                    *PREFIX_HOST,
                ]
            ),
        ),
        PackageDescriptor(
            name="libid3tag",
            version="0.15.1b",
            source_file="libid3tag-0.15.1b.tar.gz",
            url="https://downloads.sourceforge.net/project/mad/libid3tag/0.15.1b/libid3tag-0.15.1b.tar.gz",
            sha256="63da4f6e7997278f8a3fef4c6a372d342f705051d1eeb6a46a86b03610e26151",
            # The shipped config.guess/config.sub predate the musl triple.
            extra_files=(
                FileCopy("solartracker/config.guess", "config.guess"),
                FileCopy("solartracker/config.sub", "config.sub"),
            ),
            backend=AutotoolsBackend(
                [
                    *STATIC_ONLY,
                    "--disable-rpath",
                    "--disable-debugging",
                    "--disable-profiling",
                    "--disable-dependency-tracking",
                    *PREFIX_HOST,
                ]
            ),
        ),
        PackageDescriptor(
            name="libexif",
            version="0.6.25",
            source_file="libexif-0.6.25.tar.gz",
            url="https://github.com/libexif/libexif/releases/download/v0.6.25/libexif-0.6.25.tar.gz",
            sha256="16fdfa59cf9d301a9ccd5c1bc2fe05c78ee0ee2bf96e39640039e3dc0fd593cb",
            backend=AutotoolsBackend(
                [
                    *STATIC_ONLY,
                    "--disable-nls",
                    "--disable-docs",
                    "--disable-rpath",
                    "--without-libiconv-prefix",
                    "--without-libintl-prefix",
                    *PREFIX_HOST,
                ]
            ),
        ),
        PackageDescriptor(
            name="jpeg",
            version="9f",
            source_file="jpegsrc.v9f.tar.gz",
            url="https://www.ijg.org/files/jpegsrc.v9f.tar.gz",
            sha256="04705c110cb2469caa79fb71fba3d7bf834914706e9641a4589485c1f832565b",
            backend=AutotoolsBackend([*STATIC_ONLY, "--enable-maxmem=1", *PREFIX_HOST]),
        ),
        PackageDescriptor(
            name="libpng",
            version="1.6.53",
            source_file="libpng-1.6.53.tar.xz",
            url="https://downloads.sourceforge.net/project/libpng/libpng16/1.6.53/libpng-1.6.53.tar.xz",
            sha256="1d3fb8ccc2932d04aa3663e22ef5ef490244370f4e568d7850165068778d98d4",
            backend=AutotoolsBackend(
                [
                    *STATIC_ONLY,
                    "--disable-tests",
                    "--disable-tools",
                    "--disable-hardware-optimizations",
                    *PREFIX_HOST,
                ]
            ),
            enabled=thumbnails,
        ),
        PackageDescriptor(
            name="ffmpeg",
            version="6.1.2",
            source_file="ffmpeg-6.1.2.tar.gz",
            url="https://ffmpeg.org/releases/ffmpeg-6.1.2.tar.gz",
            sha256="def310d21e40c39e6971a6bcd07fba78ca3ce39cc01ffda4dca382599dc06312",
            patch_dirs=("entware",) if thumbnails else (),
            backend=AutotoolsBackend(_ffmpeg_configure_args(thumbnails)),
        ),
        PackageDescriptor(
            name="ffmpegthumbnailer",
            version="2.2.3",
            source_file="ffmpegthumbnailer-2.2.3.tar.gz",
            url="https://github.com/dirkvdb/ffmpegthumbnailer/archive/refs/tags/2.2.3.tar.gz",
            sha256="8c9b9057c6cc8bce9d11701af224c8139c940f734c439a595525e073b09d19b8",
            patch_dirs=("solartracker",),
            backend=CMakeBackend(
                [
                    "-DENABLE_STATIC=ON",
                    "-DENABLE_SHARED=OFF",
                    "-DJPEG_LIBRARY={prefix}/lib/libjpeg.a",
                    "-DPNG_LIBRARY={prefix}/lib/libpng.a",
                    "-DZLIB_LIBRARY={prefix}/lib/libz.a",
                    "-DBZIP2_LIBRARY={prefix}/lib/libbz2.a",
                    "-DCMAKE_VERBOSE_MAKEFILE=ON",
                    "-DCMAKE_EXE_LINKER_FLAGS=-static -static-libgcc -static-libstdc++",
                ]
            ),
            # Some releases do not install the C API header.
            post_install=(
                PostInstallCopy(
                    "libffmpegthumbnailer/*.h",
                    "include/libffmpegthumbnailer",
                    unless_exists="include/libffmpegthumbnailer/videothumbnailerc.h",
                ),
            ),
            enabled=thumbnails,
        ),
        _minidlna(thumbnails),
    ]
