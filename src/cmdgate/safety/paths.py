"""Path predicates for rule matching.

Paths are compared as written. Nothing is resolved against the real
filesystem, so classification stays a pure function of the command text.
"""

import posixpath
import re

# Top-level directories whose loss breaks the system
SYSTEM_DIRS = frozenset({
    "/bin", "/boot", "/dev", "/etc", "/lib", "/lib32", "/lib64", "/opt",
    "/proc", "/root", "/sbin", "/srv", "/sys", "/usr", "/var", "/home",
    "/Users", "/System", "/Library", "/Applications", "/private", "/Volumes",
})

# Directories holding per-user homes
HOME_PARENTS = frozenset({"/home", "/Users"})

# Credentials and system configuration
SENSITIVE_PREFIXES: tuple[str, ...] = (
    "~/.ssh",
    "~/.gnupg",
    "~/.gpg",
    "~/.aws",
    "~/.azure",
    "~/.gcloud",
    "~/.config/gcloud",
    "~/.kube",
    "~/.docker",
    "~/.netrc",
    "/etc",
    "/usr",
    "/var",
    "/boot",
    "/root",
    "/bin",
    "/sbin",
    "/lib",
    "/System",
    "/Library",
    "/Applications",
)

# Files whose overwrite can lock the user out or stop the machine booting
CRITICAL_FILES = frozenset({
    "/etc/passwd",
    "/etc/shadow",
    "/etc/group",
    "/etc/gshadow",
    "/etc/sudoers",
    "/etc/fstab",
    "/etc/hosts",
    "/etc/crontab",
    "~/.ssh/authorized_keys",
})

BLOCK_DEVICE_PATTERN = re.compile(
    r"^/dev/("
    r"[shv]d[a-z]+\d*|xvd[a-z]+\d*|nvme\d+n\d+(p\d+)?|mmcblk\d+(p\d+)?"
    r"|r?disk\d+(s\d+)?|md\d+|dm-\d+|mapper/.+|loop\d+|sr\d+|sg\d+"
    r")$"
)

HOME_PREFIX_PATTERN = re.compile(r"^(~|\$HOME|\$\{HOME\})(?=/|$)")


def normalize(path: str) -> str:
    """Canonical spelling of a path: home prefixes become ``~``, no trailing slash."""
    path = HOME_PREFIX_PATTERN.sub("~", path.strip())
    if not path:
        return path
    if path.startswith(("/", "~")):
        path = posixpath.normpath(path)
        if path.startswith("//"):
            path = "/" + path.lstrip("/")
    return path


def strip_glob(path: str) -> str:
    """Directory a trailing-glob argument targets: ``/etc/*`` -> ``/etc``."""
    while path.endswith(("/*", "/.*")):
        path = path.rsplit("/", 1)[0] or "/"
    return path


def is_root(path: str) -> bool:
    path = normalize(path)
    return path == "/" or strip_glob(path) == "/" or path in ("/*", "/.*")


def is_home(path: str) -> bool:
    path = strip_glob(normalize(path))
    return path == "~"


def is_system_dir(path: str) -> bool:
    """A top-level system directory (or everything in it)."""
    return strip_glob(normalize(path)) in SYSTEM_DIRS


def is_system_path(path: str) -> bool:
    """Anything under a system directory."""
    path = normalize(path)
    return any(path == d or path.startswith(d + "/") for d in SYSTEM_DIRS if d != "/home")


def is_critical_target(path: str) -> bool:
    """Deleting this would wipe the system, a home directory or the working tree."""
    norm = normalize(path)
    if not norm:
        return False
    if norm in ("*", ".", "..", "./*", "../*", ".*"):
        return True
    if is_root(norm) or is_home(norm) or is_system_dir(norm):
        return True
    base = strip_glob(norm)
    return posixpath.dirname(base) in HOME_PARENTS


def is_block_device(path: str) -> bool:
    return bool(BLOCK_DEVICE_PATTERN.match(path.strip()))


def is_sensitive_path(path: str) -> bool:
    path = normalize(path)
    return any(path == p or path.startswith(p + "/") for p in SENSITIVE_PREFIXES)


def is_critical_file(path: str) -> bool:
    return normalize(path) in CRITICAL_FILES


def is_null_sink(path: str) -> bool:
    """Write targets that persist nothing."""
    return path in ("/dev/null", "/dev/stdout", "/dev/stderr", "/dev/tty") or path.startswith("/dev/fd/")
