"""Rule engine for command risk classification.

Rules are evaluated per logical unit (UNIT scope) or once against the whole
tokenized line (LINE scope). Matching is exhaustive: every rule that fires
contributes its tier and reason, so the user sees every concern at once.

Rule families:
- Program names (disk formatting, power control, deletion, administration)
- Argument shapes (rm -rf on critical paths, chmod on system dirs, dd of=)
- Network and remote execution (fetch piped into an interpreter)
- Privilege escalation (sudo, su, setuid chmod)
- Redirection targets (block devices, sensitive files)
- Indirection (eval, sh -c, xargs, find -exec, inline interpreter code)

A separate read-only allowlist decides whether a unit with no matches may
run without confirmation.
"""

import functools
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

import yaml

from cmdgate.errors import RuleConfigError
from cmdgate.logging import Loggers
from cmdgate.safety import paths
from cmdgate.safety.models import (
    LogicalUnit,
    RiskTier,
    Rule,
    RuleKind,
    RuleMatch,
    RuleScope,
    TokenizeResult,
)
from cmdgate.safety.tokenizer import SHELL_PROGRAMS, CommandTokenizer

logger = Loggers.safety()


# Disk formatting and partitioning
DISK_PROGRAMS: set[str] = {
    "mkfs",
    "mke2fs",
    "mkswap",
    "fdisk",
    "sfdisk",
    "cfdisk",
    "gdisk",
    "sgdisk",
    "parted",
    "wipefs",
}

DISKUTIL_DESTRUCTIVE_VERBS = ("erase", "partition", "zero", "secureerase", "reformat")

# Power control
POWER_PROGRAMS: set[str] = {
    "shutdown",
    "reboot",
    "halt",
    "poweroff",
}

POWER_VERBS: set[str] = {"poweroff", "reboot", "halt", "kexec", "suspend", "hibernate"}

# Deleting or overwriting data
DESTRUCTIVE_PROGRAMS: set[str] = {
    "rm",
    "rmdir",
    "unlink",
    "shred",
    "dd",
    "truncate",
    "wipe",
    "srm",
}

# System configuration, services, users and processes
SYSTEM_ADMIN_PROGRAMS: set[str] = {
    "chmod",
    "chown",
    "chgrp",
    "chattr",
    "systemctl",
    "service",
    "launchctl",
    "iptables",
    "ip6tables",
    "nft",
    "ufw",
    "firewall-cmd",
    "pfctl",
    "mount",
    "umount",
    "swapon",
    "swapoff",
    "kill",
    "killall",
    "pkill",
    "crontab",
    "useradd",
    "userdel",
    "usermod",
    "groupadd",
    "groupdel",
    "passwd",
    "chpasswd",
    "visudo",
    "networksetup",
    "scutil",
    "sysctl",
    "modprobe",
    "insmod",
    "rmmod",
    "csrutil",
    "nvram",
    "defaults",
}

# Programs that switch user or gain privileges
PRIVILEGE_PROGRAMS: set[str] = {
    "sudo",
    "su",
    "doas",
    "pkexec",
    "runas",
    "sudoedit",
    "gosu",
}

# Programs that fetch remote content
FETCH_PROGRAMS: set[str] = {
    "curl",
    "wget",
    "fetch",
    "aria2c",
    "http",
    "https",
    "xh",
    "nc",
    "netcat",
    "ncat",
    "socat",
    "lwp-request",
    "tftp",
    "ftp",
}

# Programs that turn encoded text back into something runnable
DECODER_PROGRAMS: set[str] = {
    "base64",
    "base32",
    "xxd",
    "openssl",
    "uudecode",
    "gunzip",
    "zcat",
}

# Programs with network access
NETWORK_PROGRAMS: set[str] = FETCH_PROGRAMS | {
    "ssh",
    "scp",
    "sftp",
    "rsync",
    "telnet",
    "mosh",
}

# Programs that execute code read from a file or stdin
INTERPRETERS: set[str] = SHELL_PROGRAMS | {
    "python",
    "python2",
    "python3",
    "pypy",
    "pypy3",
    "perl",
    "ruby",
    "node",
    "nodejs",
    "deno",
    "bun",
    "php",
    "lua",
    "tclsh",
    "osascript",
    "pwsh",
    "powershell",
    "source",
    ".",
}

INTERPRETER_VERSION_PATTERN = re.compile(r"^(python|pypy|perl|ruby|php|lua)\d+(\.\d+)*$")

# interpreter -> options that take inline code
INLINE_CODE_OPTIONS: dict[str, frozenset[str]] = {
    "python": frozenset({"-c"}),
    "pypy": frozenset({"-c"}),
    "perl": frozenset({"-e", "-E"}),
    "ruby": frozenset({"-e"}),
    "node": frozenset({"-e", "--eval", "-p", "--print"}),
    "nodejs": frozenset({"-e", "--eval", "-p", "--print"}),
    "deno": frozenset({"eval"}),
    "bun": frozenset({"-e", "--eval"}),
    "php": frozenset({"-r"}),
    "lua": frozenset({"-e"}),
    "osascript": frozenset({"-e"}),
    "pwsh": frozenset({"-c", "-command", "-Command", "-EncodedCommand", "-e"}),
    "powershell": frozenset({"-c", "-command", "-Command", "-EncodedCommand", "-e"}),
}

# manager -> subcommands that remove packages or containers
REMOVAL_SUBCOMMANDS: dict[str, frozenset[str]] = {
    "brew": frozenset({"uninstall", "remove", "rm", "cleanup"}),
    "npm": frozenset({"uninstall", "remove", "rm", "un", "unlink", "r"}),
    "pnpm": frozenset({"remove", "rm", "uninstall", "un"}),
    "yarn": frozenset({"remove"}),
    "pip": frozenset({"uninstall"}),
    "pip3": frozenset({"uninstall"}),
    "pipx": frozenset({"uninstall", "uninstall-all"}),
    "cargo": frozenset({"uninstall"}),
    "gem": frozenset({"uninstall"}),
    "apt": frozenset({"remove", "purge", "autoremove"}),
    "apt-get": frozenset({"remove", "purge", "autoremove"}),
    "yum": frozenset({"remove", "erase", "autoremove"}),
    "dnf": frozenset({"remove", "erase", "autoremove"}),
    "zypper": frozenset({"remove", "rm"}),
    "apk": frozenset({"del"}),
    "snap": frozenset({"remove"}),
    "flatpak": frozenset({"uninstall"}),
    "port": frozenset({"uninstall"}),
    "docker": frozenset({"rm", "rmi", "prune"}),
    "podman": frozenset({"rm", "rmi", "prune"}),
    "kubectl": frozenset({"delete"}),
}

DOCKER_OBJECTS = frozenset({"container", "image", "volume", "network", "system", "builder"})

# git invocations that discard work
GIT_DESTRUCTIVE: tuple[tuple[str, frozenset[str]], ...] = (
    ("reset", frozenset({"--hard", "--merge", "--keep"})),
    ("clean", frozenset({"-f", "--force", "-fd", "-df", "-fdx", "-xdf", "-fx", "-xf", "-dfx"})),
    ("push", frozenset({"-f", "--force", "--force-with-lease", "--mirror", "--delete", "-d"})),
    ("branch", frozenset({"-D"})),
    ("checkout", frozenset({"-f", "--force", "."})),
    ("stash", frozenset({"drop", "clear"})),
)

FORK_BOMB_PATTERN = re.compile(r"([\w:.]+)\(\)\{\1\|\1&\};\1")
DYNAMIC_NAME_PATTERN = re.compile(r"\$|`|<\(")
WINDOWS_DRIVE_PATTERN = re.compile(r"^[A-Za-z]:\\?$")
SETUID_SYMBOLIC_PATTERN = re.compile(r"[+=][rwxXtugo]*s")
INLINE_CODE_LETTERS = frozenset("cemrpE")


# Argument helpers


def _short_flags(args: Iterable[str]) -> set[str]:
    """Letters of all short-option clusters, up to ``--``."""
    letters: set[str] = set()
    for arg in args:
        if arg == "--":
            break
        if arg.startswith("-") and not arg.startswith("--") and len(arg) > 1:
            letters.update(arg[1:])
    return letters


def _long_flags(args: Iterable[str]) -> set[str]:
    flags: set[str] = set()
    for arg in args:
        if arg == "--":
            break
        if arg.startswith("--") and len(arg) > 2:
            flags.add(arg.split("=", 1)[0])
    return flags


def _positionals(args: Sequence[str], value_options: frozenset[str] = frozenset()) -> list[str]:
    """Non-option arguments, honoring ``--`` and options that take a value."""
    result: list[str] = []
    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "--":
            result.extend(args[i + 1:])
            break
        if arg.startswith("-") and len(arg) > 1:
            i += 2 if arg in value_options else 1
            continue
        result.append(arg)
        i += 1
    return result


def is_interpreter(program: str) -> bool:
    return program in INTERPRETERS or bool(INTERPRETER_VERSION_PATTERN.match(program))


def _interpreter_family(program: str) -> str:
    match = INTERPRETER_VERSION_PATTERN.match(program)
    return match.group(1) if match else program


def _reads_code_from_stdin(unit: LogicalUnit) -> bool:
    """Whether an interpreter takes its program text from stdin.

    ``bash``, ``bash -s`` and ``python -`` do; ``python -m json.tool`` and
    ``bash script.sh`` do not.
    """
    prog = unit.program
    args = unit.args
    if prog in ("source", "."):
        return any(arg in ("/dev/stdin", "-", "/proc/self/fd/0") for arg in args)
    for i, arg in enumerate(args):
        if arg == "-":
            return True
        if arg == "--":
            rest = args[i + 1:]
            return not rest or rest[0] == "-"
        if prog in SHELL_PROGRAMS and arg.startswith("-") and len(arg) > 1 and not arg.startswith("--"):
            if "c" in arg[1:]:
                return False
            if "s" in arg[1:]:
                return True
            continue
        if arg in ("--eval", "--print", "--version", "--help", "-V", "-h"):
            return False
        if arg.startswith("-") and not arg.startswith("--") and INLINE_CODE_LETTERS.intersection(arg[1:]):
            return False
        if not arg.startswith("-"):
            return False
    return True


@functools.lru_cache(maxsize=256)
def upstream_programs(text: str) -> frozenset[str]:
    """Programs whose output flows out of a pipeline stage's text."""
    result = CommandTokenizer().tokenize(text)
    programs = {unit.program for unit in result.units if unit.program}
    for unit in result.units:
        programs.update(unit.wrappers)
    return frozenset(programs)


def _unit_by_index(result: TokenizeResult, index: int | None) -> LogicalUnit | None:
    if index is None or index >= len(result.units):
        return None
    unit = result.units[index]
    return unit if unit.index == index else None


# Program matchers


def _match_disk_program(unit: LogicalUnit, result: TokenizeResult) -> bool | str:
    prog = unit.program
    if prog in DISK_PROGRAMS or prog.startswith(("mkfs.", "mkfs_", "newfs")):
        return True
    if prog == "diskutil" and unit.args:
        verb = unit.args[0].lower()
        if verb.startswith(DISKUTIL_DESTRUCTIVE_VERBS):
            return f"'diskutil {unit.args[0]}' erases or repartitions a disk"
    return False


def _match_power_program(unit: LogicalUnit, result: TokenizeResult) -> bool | str:
    prog = unit.program
    if prog in POWER_PROGRAMS:
        return True
    if prog in ("init", "telinit") and unit.args and unit.args[0] in ("0", "6"):
        return f"'{prog} {unit.args[0]}' changes the system runlevel"
    if prog == "systemctl" and POWER_VERBS.intersection(unit.args):
        return "'systemctl' power action shuts down or restarts the machine"
    return False


def _match_destructive_program(unit: LogicalUnit, result: TokenizeResult) -> bool:
    return unit.program in DESTRUCTIVE_PROGRAMS


def _match_system_admin(unit: LogicalUnit, result: TokenizeResult) -> bool:
    return unit.program in SYSTEM_ADMIN_PROGRAMS


def _match_windows_destructive(unit: LogicalUnit, result: TokenizeResult) -> bool | str:
    prog = unit.program.lower()
    args = [arg.lower() for arg in unit.args]
    if prog == "format" and any(WINDOWS_DRIVE_PATTERN.match(arg) for arg in args):
        return "'format' erases a drive"
    if prog in ("del", "erase") and {"/s", "/q", "/f"}.intersection(args):
        return f"'{prog}' deletes files without prompting"
    if prog in ("rd", "rmdir") and "/s" in args:
        return f"'{prog} /s' deletes a directory tree"
    return False


# Argument-shape matchers


def _rm_targets(unit: LogicalUnit) -> list[str]:
    return _positionals(unit.args)


def _match_rm_critical(unit: LogicalUnit, result: TokenizeResult) -> bool | str:
    if unit.program != "rm":
        return False
    if "--no-preserve-root" in _long_flags(unit.args):
        return "'rm --no-preserve-root' can delete the root filesystem"
    short = _short_flags(unit.args)
    long = _long_flags(unit.args)
    recursive = bool({"r", "R"} & short) or "--recursive" in long
    force = "f" in short or "--force" in long
    if not (recursive or force):
        return False
    for target in _rm_targets(unit):
        if paths.is_critical_target(target):
            return f"'rm' with recursive/force flags on '{target}' would wipe critical data"
    return False


def _match_rm_recursive_force(unit: LogicalUnit, result: TokenizeResult) -> bool:
    if unit.program != "rm":
        return False
    short = _short_flags(unit.args)
    long = _long_flags(unit.args)
    recursive = bool({"r", "R"} & short) or "--recursive" in long
    force = "f" in short or "--force" in long
    return recursive and force


def _permission_targets(unit: LogicalUnit) -> list[str]:
    """Paths a chmod/chown/chgrp invocation changes."""
    positionals = _positionals(unit.args, frozenset({"--reference"}))
    if any(arg.startswith("--reference") for arg in unit.args):
        return positionals
    return positionals[1:]


def _match_permission_root(unit: LogicalUnit, result: TokenizeResult) -> bool | str:
    if unit.program not in ("chmod", "chown", "chgrp"):
        return False
    recursive = "R" in _short_flags(unit.args) or "--recursive" in _long_flags(unit.args)
    for target in _permission_targets(unit):
        if paths.is_root(target):
            return f"'{unit.program}' on '/' changes the whole filesystem"
        if recursive and (paths.is_system_dir(target) or paths.is_home(target)):
            return f"recursive '{unit.program}' on '{target}' changes a system directory tree"
    return False


def _match_permission_system_path(unit: LogicalUnit, result: TokenizeResult) -> bool | str:
    if unit.program not in ("chmod", "chown", "chgrp"):
        return False
    for target in _permission_targets(unit):
        if paths.is_system_path(target) or paths.is_sensitive_path(target):
            return f"'{unit.program}' changes ownership or permissions of '{target}'"
    return False


def _is_setuid_mode(mode: str) -> bool:
    if mode.isdigit():
        return len(mode) >= 4 and mode[-4] in "234567"
    return bool(SETUID_SYMBOLIC_PATTERN.search(mode))


def _match_setuid(unit: LogicalUnit, result: TokenizeResult) -> bool:
    if unit.program != "chmod":
        return False
    positionals = _positionals(unit.args)
    return bool(positionals) and _is_setuid_mode(positionals[0])


def _match_dd_block_device(unit: LogicalUnit, result: TokenizeResult) -> bool | str:
    if unit.program != "dd":
        return False
    for arg in unit.args:
        if arg.startswith("of=") and paths.is_block_device(arg[3:]):
            return f"'dd' writes directly to block device '{arg[3:]}'"
    return False


def _match_dd_output(unit: LogicalUnit, result: TokenizeResult) -> bool | str:
    if unit.program != "dd":
        return False
    for arg in unit.args:
        if arg.startswith("of=") and not paths.is_block_device(arg[3:]) and not paths.is_null_sink(arg[3:]):
            return f"'dd' overwrites '{arg[3:]}'"
    return False


def _match_package_removal(unit: LogicalUnit, result: TokenizeResult) -> bool | str:
    if unit.program == "pacman" and any(arg.startswith("-R") for arg in unit.args):
        return "'pacman -R' removes installed packages"
    verbs = REMOVAL_SUBCOMMANDS.get(unit.program)
    if verbs is None:
        return False
    positionals = _positionals(unit.args)
    if unit.program in ("docker", "podman") and positionals and positionals[0] in DOCKER_OBJECTS:
        positionals = positionals[1:]
    if positionals and positionals[0] in verbs:
        return f"'{unit.program} {positionals[0]}' removes installed software or resources"
    return False


def _match_find_delete(unit: LogicalUnit, result: TokenizeResult) -> bool:
    return unit.program in ("find", "gfind") and "-delete" in unit.args


def _match_git_destructive(unit: LogicalUnit, result: TokenizeResult) -> bool | str:
    if unit.program != "git":
        return False
    positionals = _positionals(unit.args, frozenset({"-C", "-c", "--git-dir", "--work-tree"}))
    if not positionals:
        return False
    sub = positionals[0]
    args = set(unit.args)
    for name, flags in GIT_DESTRUCTIVE:
        if sub == name and flags & args:
            return f"'git {sub}' discards work that cannot be recovered"
    if sub == "clean" and "f" in _short_flags(unit.args):
        return "'git clean' deletes untracked files"
    return False


# Network and remote execution matchers


def _match_remote_pipe(unit: LogicalUnit, result: TokenizeResult) -> bool | str:
    if not unit.stdin_from or not is_interpreter(unit.program):
        return False
    if not _reads_code_from_stdin(unit):
        return False
    upstream = upstream_programs(unit.stdin_from)
    fetched = sorted(upstream & FETCH_PROGRAMS)
    if fetched:
        return f"pipes content downloaded by '{fetched[0]}' into '{unit.program}'"
    decoded = sorted(upstream & DECODER_PROGRAMS)
    if decoded:
        return f"pipes a payload decoded by '{decoded[0]}' into '{unit.program}'"
    return False


def _runs_payload(unit: LogicalUnit) -> bool:
    """Whether a unit executes text it is given (interpreter, eval, computed name)."""
    if unit.program == "eval" or is_interpreter(unit.program):
        return True
    return bool(unit.argv) and bool(DYNAMIC_NAME_PATTERN.search(unit.argv[0]))


def _match_remote_substitution(unit: LogicalUnit, result: TokenizeResult) -> bool | str:
    if not unit.indirect or unit.program not in FETCH_PROGRAMS:
        return False
    parent = _unit_by_index(result, unit.parent)
    while parent is not None:
        if _runs_payload(parent):
            return f"runs code downloaded by '{unit.program}' through '{parent.program or parent.text}'"
        if not parent.indirect:
            break
        parent = _unit_by_index(result, parent.parent)
    return False


def _match_netcat_exec(unit: LogicalUnit, result: TokenizeResult) -> bool | str:
    prog = unit.program
    if prog in ("nc", "netcat", "ncat"):
        if {"e", "c"} & _short_flags(unit.args) or {"--exec", "--sh-exec", "--lua-exec"} & _long_flags(unit.args):
            return f"'{prog}' with an exec option opens a remote shell"
    if prog == "socat" and any(arg.lower().startswith(("exec:", "system:")) for arg in unit.args):
        return "'socat' exec address opens a remote shell"
    return False


def _match_dev_tcp(unit: LogicalUnit, result: TokenizeResult) -> bool | str:
    for redirect in unit.redirections:
        if redirect.target.startswith(("/dev/tcp/", "/dev/udp/")):
            return f"redirection to '{redirect.target}' opens a raw network connection"
    return False


def _match_network_client(unit: LogicalUnit, result: TokenizeResult) -> bool:
    return unit.program in NETWORK_PROGRAMS


# Privilege matchers


def _match_privilege(unit: LogicalUnit, result: TokenizeResult) -> bool | str:
    if unit.program in PRIVILEGE_PROGRAMS:
        return True
    escalations = [w for w in unit.wrappers if w in PRIVILEGE_PROGRAMS]
    if escalations:
        return f"runs '{unit.program}' with elevated privileges via '{escalations[0]}'"
    return False


# Redirect matchers


def _write_targets(unit: LogicalUnit) -> list[str]:
    targets = [
        r.target for r in unit.redirections
        if r.is_write and not r.is_fd_dup and r.target
    ]
    if unit.program == "tee":
        targets.extend(_positionals(unit.args))
    return targets


def _match_redirect_critical(unit: LogicalUnit, result: TokenizeResult) -> bool | str:
    for target in _write_targets(unit):
        if paths.is_block_device(target):
            return f"writes directly to block device '{target}'"
        if paths.is_critical_file(target):
            return f"overwrites critical system file '{target}'"
    return False


def _match_redirect_sensitive(unit: LogicalUnit, result: TokenizeResult) -> bool | str:
    for target in _write_targets(unit):
        if paths.is_critical_file(target) or paths.is_block_device(target):
            continue
        if paths.is_sensitive_path(target):
            return f"writes to sensitive path '{target}'"
    return False


# Indirection matchers


def _match_eval(unit: LogicalUnit, result: TokenizeResult) -> bool:
    return unit.program == "eval"


def _match_shell_invocation(unit: LogicalUnit, result: TokenizeResult) -> bool | str:
    if unit.program not in SHELL_PROGRAMS:
        return False
    if any(arg.startswith("-") and not arg.startswith("--") and "c" in arg[1:] for arg in unit.args):
        return f"'{unit.program} -c' runs an inline script"
    return True


def _match_inline_code(unit: LogicalUnit, result: TokenizeResult) -> bool:
    options = INLINE_CODE_OPTIONS.get(_interpreter_family(unit.program))
    if not options:
        return False
    for arg in unit.args:
        if arg in options or arg.split("=", 1)[0] in options:
            return True
        # clusters such as perl -ne or python -Bc
        if arg.startswith("-") and not arg.startswith("--") and any(f"-{c}" in options for c in arg[1:]):
            return True
    return False


def _match_xargs(unit: LogicalUnit, result: TokenizeResult) -> bool:
    return unit.program == "xargs"


def _match_find_exec(unit: LogicalUnit, result: TokenizeResult) -> bool:
    if unit.program in ("find", "gfind"):
        return any(arg in ("-exec", "-execdir", "-ok", "-okdir") for arg in unit.args)
    if unit.program in ("fd", "fdfind"):
        return any(arg in ("-x", "--exec", "-X", "--exec-batch") for arg in unit.args)
    return False


def _match_source(unit: LogicalUnit, result: TokenizeResult) -> bool:
    return unit.program in ("source", ".") and bool(unit.args)


def _match_dynamic_name(unit: LogicalUnit, result: TokenizeResult) -> bool:
    return bool(unit.argv) and bool(DYNAMIC_NAME_PATTERN.search(unit.argv[0]))


# Line matchers


def _match_fork_bomb(unit: None, result: TokenizeResult) -> bool:
    compact = re.sub(r"\s+", "", result.command)
    return bool(FORK_BOMB_PATTERN.search(compact))


def _rule(
    name: str,
    tier: RiskTier,
    reason: str,
    kind: RuleKind,
    matcher: Callable[..., Any],
    scope: RuleScope = RuleScope.UNIT,
) -> Rule:
    return Rule(name=name, tier=tier, reason=reason, matcher=matcher, scope=scope, kind=kind)


BLOCKED = RiskTier.BLOCKED
CONFIRM = RiskTier.CONFIRM

DEFAULT_RULES: tuple[Rule, ...] = (
    # (a) program names
    _rule("disk_format", BLOCKED, "'{program}' formats or repartitions a disk",
          RuleKind.PROGRAM, _match_disk_program),
    _rule("power_control", BLOCKED, "'{program}' shuts down or restarts the machine",
          RuleKind.PROGRAM, _match_power_program),
    _rule("windows_destructive", BLOCKED, "destructive Windows command",
          RuleKind.PROGRAM, _match_windows_destructive),
    _rule("destructive_program", CONFIRM, "'{program}' deletes or overwrites data",
          RuleKind.PROGRAM, _match_destructive_program),
    _rule("system_admin", CONFIRM, "'{program}' changes system configuration",
          RuleKind.PROGRAM, _match_system_admin),
    # (b) argument shapes
    _rule("rm_critical_target", BLOCKED, "'rm' targets a critical path",
          RuleKind.ARGUMENTS, _match_rm_critical),
    _rule("rm_recursive_force", CONFIRM, "'rm -rf' deletes recursively without prompting",
          RuleKind.ARGUMENTS, _match_rm_recursive_force),
    _rule("permission_root", BLOCKED, "'{program}' changes the whole filesystem",
          RuleKind.ARGUMENTS, _match_permission_root),
    _rule("permission_system_path", CONFIRM, "'{program}' changes a system path",
          RuleKind.ARGUMENTS, _match_permission_system_path),
    _rule("dd_block_device", BLOCKED, "'dd' writes to a block device",
          RuleKind.ARGUMENTS, _match_dd_block_device),
    _rule("dd_output", CONFIRM, "'dd' overwrites a file",
          RuleKind.ARGUMENTS, _match_dd_output),
    _rule("package_removal", CONFIRM, "'{program}' removes packages",
          RuleKind.ARGUMENTS, _match_package_removal),
    _rule("find_delete", CONFIRM, "'find -delete' removes every match",
          RuleKind.ARGUMENTS, _match_find_delete),
    _rule("git_destructive", CONFIRM, "'git' discards work",
          RuleKind.ARGUMENTS, _match_git_destructive),
    # (c) network and remote execution
    _rule("remote_code_pipe", BLOCKED, "pipes remote content into an interpreter",
          RuleKind.NETWORK, _match_remote_pipe),
    _rule("remote_code_substitution", BLOCKED, "runs downloaded code",
          RuleKind.NETWORK, _match_remote_substitution),
    _rule("reverse_shell", BLOCKED, "opens a remote shell",
          RuleKind.NETWORK, _match_netcat_exec),
    _rule("raw_socket_redirect", BLOCKED, "redirects to a raw network socket",
          RuleKind.NETWORK, _match_dev_tcp),
    _rule("network_client", CONFIRM, "'{program}' accesses the network",
          RuleKind.NETWORK, _match_network_client),
    # (d) privilege escalation
    _rule("privilege_escalation", CONFIRM, "'{program}' runs commands with elevated privileges",
          RuleKind.PRIVILEGE, _match_privilege),
    _rule("setuid_bit", CONFIRM, "'chmod' sets the setuid/setgid bit",
          RuleKind.PRIVILEGE, _match_setuid),
    # redirection targets
    _rule("redirect_critical", BLOCKED, "writes to a block device or critical file",
          RuleKind.REDIRECT, _match_redirect_critical),
    _rule("redirect_sensitive", CONFIRM, "writes to a sensitive path",
          RuleKind.REDIRECT, _match_redirect_sensitive),
    # indirection
    _rule("eval", CONFIRM, "'eval' runs a dynamically built command",
          RuleKind.INDIRECTION, _match_eval),
    _rule("shell_invocation", CONFIRM, "'{program}' runs a shell script",
          RuleKind.INDIRECTION, _match_shell_invocation),
    _rule("inline_code", CONFIRM, "'{program}' runs inline code",
          RuleKind.INDIRECTION, _match_inline_code),
    _rule("xargs", CONFIRM, "'xargs' runs a command built from its input",
          RuleKind.INDIRECTION, _match_xargs),
    _rule("find_exec", CONFIRM, "'{program}' runs a command for every match",
          RuleKind.INDIRECTION, _match_find_exec),
    _rule("source", CONFIRM, "'{program}' runs a script in the current shell",
          RuleKind.INDIRECTION, _match_source),
    _rule("dynamic_command", CONFIRM, "command name is computed at run time",
          RuleKind.INDIRECTION, _match_dynamic_name),
    # whole line
    _rule("fork_bomb", BLOCKED, "fork bomb exhausts system resources",
          RuleKind.PATTERN, _match_fork_bomb, RuleScope.LINE),
)


# Read-only allowlist

READ_ONLY_PROGRAMS: set[str] = {
    # Directory listing
    "ls",
    "dir",
    "tree",
    "exa",
    "eza",
    "lsd",
    # File viewing
    "cat",
    "tac",
    "head",
    "tail",
    "less",
    "more",
    "bat",
    "batcat",
    # Search
    "grep",
    "egrep",
    "fgrep",
    "rg",
    "ag",
    "ack",
    "find",
    "gfind",
    "fd",
    "fdfind",
    "locate",
    "which",
    "whereis",
    "type",
    # Text processing
    "wc",
    "sort",
    "uniq",
    "diff",
    "cmp",
    "comm",
    "cut",
    "tr",
    "paste",
    "join",
    "column",
    "nl",
    "fold",
    "fmt",
    "expand",
    "unexpand",
    "rev",
    "jq",
    "yq",
    "awk",
    "gawk",
    "mawk",
    "sed",
    "gsed",
    # Output
    "echo",
    "printf",
    "date",
    "cal",
    "seq",
    "true",
    "false",
    "test",
    "[",
    "[[",
    "sleep",
    # System info
    "pwd",
    "whoami",
    "hostname",
    "uname",
    "id",
    "groups",
    "env",
    "printenv",
    "uptime",
    "nproc",
    "arch",
    "ps",
    "pgrep",
    "pstree",
    "top",
    "htop",
    "free",
    "vmstat",
    "iostat",
    "lsof",
    "w",
    "who",
    "lscpu",
    "lsblk",
    "lsusb",
    "lspci",
    "sw_vers",
    # File info
    "file",
    "stat",
    "du",
    "df",
    "realpath",
    "readlink",
    "dirname",
    "basename",
    "md5sum",
    "sha1sum",
    "sha256sum",
    "sha512sum",
    "shasum",
    "cksum",
    "od",
    "hexdump",
    "xxd",
    "strings",
    # Help
    "man",
    "help",
    "command",
    # Version control
    "git",
}

# program -> options that make it write, delete or execute
DENIED_OPTIONS: dict[str, frozenset[str]] = {
    "find": frozenset({"-delete", "-exec", "-execdir", "-ok", "-okdir", "-fprint", "-fprint0", "-fprintf", "-fls"}),
    "gfind": frozenset({"-delete", "-exec", "-execdir", "-ok", "-okdir", "-fprint", "-fprint0", "-fprintf", "-fls"}),
    "fd": frozenset({"-x", "--exec", "-X", "--exec-batch"}),
    "fdfind": frozenset({"-x", "--exec", "-X", "--exec-batch"}),
    "sort": frozenset({"-o", "--output", "--compress-program"}),
    "tree": frozenset({"-o"}),
    "date": frozenset({"-s", "--set"}),
    "yq": frozenset({"-i", "--inplace"}),
    "xxd": frozenset({"-r", "-revert"}),
    "rg": frozenset({"--pre"}),
    "less": frozenset({"-o", "--log-file", "-O", "--LOG-FILE"}),
    "man": frozenset({"-P", "--pager", "-H", "--html"}),
}

GIT_READ_ONLY: set[str] = {
    "status",
    "log",
    "diff",
    "show",
    "blame",
    "shortlog",
    "describe",
    "rev-parse",
    "rev-list",
    "ls-files",
    "ls-tree",
    "ls-remote",
    "cat-file",
    "whatchanged",
    "grep",
    "help",
    "version",
}

GIT_LISTING_FLAGS = frozenset({
    "-l", "--list", "-a", "--all", "-r", "--remotes", "-v", "-vv", "--verbose",
    "--show-current", "--contains", "--no-contains", "--merged", "--no-merged",
    "--points-at", "--sort", "--format", "--column", "--no-column", "-n",
})
GIT_BRANCH_WRITE_FLAGS = frozenset({
    "-d", "-D", "--delete", "-m", "-M", "--move", "-c", "-C", "--copy",
    "-f", "--force", "-u", "--set-upstream-to", "--unset-upstream",
    "--edit-description", "-t", "--track", "--create-reflog",
})
GIT_TAG_WRITE_FLAGS = frozenset({"-d", "--delete", "-f", "--force", "-a", "--annotate", "-s", "--sign", "-m", "--message"})
GIT_CONFIG_READ_FLAGS = frozenset({"--get", "--get-all", "--get-regexp", "--list", "-l", "--show-origin"})
AWK_SIDE_EFFECT_PATTERN = re.compile(r"system\s*\(|\|\s*(getline|\")|>>?\s*\"|\|&")

# sed commands that print, move through input or shuffle the hold space
SED_QUIET_COMMANDS = frozenset("=dDgGhHlLnNpPqQxzF{}")
# take the rest of the line as text or a file to read
SED_TEXT_COMMANDS = frozenset("aicrR")
SED_JUMP_COMMANDS = frozenset(":btT")
SED_SUBSTITUTE_FLAGS = frozenset("gpiImM0123456789")


def _is_denied(arg: str, denied: frozenset[str]) -> bool:
    name = arg.split("=", 1)[0]
    if arg in denied or name in denied:
        return True
    if arg.startswith("--"):
        # getopt accepts unambiguous abbreviations such as --compress=sh
        return len(name) > 3 and any(option.startswith(name) for option in denied if option.startswith("--"))
    # value attached to a short option, as in -ofile
    return any(len(option) == 2 and arg.startswith(option) for option in denied)


def _skip_delimited(script: str, i: int, delim: str) -> int | None:
    """Index just past the next unescaped ``delim``, or None if unterminated."""
    while i < len(script):
        if script[i] == "\\":
            i += 2
            continue
        if script[i] == delim:
            return i + 1
        i += 1
    return None


def _skip_sed_address(script: str, i: int) -> int | None:
    n = len(script)
    if i >= n:
        return i
    if script[i].isdigit():
        while i < n and (script[i].isdigit() or script[i] == "~"):
            i += 1
        return i
    if script[i] == "$":
        return i + 1
    if script[i] == "/":
        end = _skip_delimited(script, i + 1, "/")
    elif script[i] == "\\" and i + 1 < n:
        end = _skip_delimited(script, i + 2, script[i + 1])
    else:
        return i
    if end is None:
        return None
    while end < n and script[end] in "IM":
        end += 1
    return end


def sed_script_problem(script: str) -> str | None:
    """Why a sed script may do more than print, or None if it only prints.

    Anything the scanner does not recognize counts as a problem.
    """
    n = len(script)
    i = 0
    while i < n:
        if script[i] in " \t\n;":
            i += 1
            continue
        end = _skip_sed_address(script, i)
        if end is not None and end < n and script[end] == ",":
            end += 1
            if end < n and script[end] in "+~":
                end += 1
                while end < n and script[end].isdigit():
                    end += 1
            else:
                second = _skip_sed_address(script, end)
                end = None if second == end else second
        if end is None:
            return "sed address could not be parsed"
        i = end
        while i < n and script[i] in " \t!":
            i += 1
        if i >= n:
            return "sed address without a command"

        command = script[i]
        i += 1
        if command in SED_QUIET_COMMANDS:
            while i < n and (script[i].isdigit() or script[i] in " \t"):
                i += 1
        elif command in SED_TEXT_COMMANDS:
            newline = script.find("\n", i)
            i = n if newline < 0 else newline
        elif command in SED_JUMP_COMMANDS:
            while i < n and script[i] not in ";\n":
                i += 1
        elif command in "sy":
            if i >= n or script[i] in "\n\\":
                return f"sed '{command}' command could not be parsed"
            delim = script[i]
            end = _skip_delimited(script, i + 1, delim)
            end = _skip_delimited(script, end, delim) if end is not None else None
            if end is None:
                return f"sed '{command}' command is unterminated"
            i = end
            while command == "s" and i < n and script[i] not in ";\n} \t":
                if script[i] not in SED_SUBSTITUTE_FLAGS:
                    return f"sed 's///{script[i]}' runs commands or writes files"
                i += 1
        elif command in "ewW":
            return f"sed '{command}' command runs commands or writes files"
        else:
            return f"sed command '{command}' is not known to be read-only"
    return None


@dataclass(frozen=True)
class AllowEntry:
    """A user-allowed program, optionally limited to leading arguments."""

    program: str
    args: tuple[str, ...] = ()

    def matches(self, unit: LogicalUnit) -> bool:
        return unit.program == self.program and unit.args[:len(self.args)] == self.args


class ReadOnlyAllowlist:
    """Decides whether a unit only inspects state.

    ``check()`` returns None for an allowed unit, otherwise the reason it is
    not allowed.
    """

    def __init__(self, extra: Iterable[AllowEntry] = ()):
        self.extra = tuple(extra)
        self._checkers: dict[str, Callable[[LogicalUnit], str | None]] = {
            "sed": self._check_sed,
            "gsed": self._check_sed,
            "less": self._check_pager,
            "more": self._check_pager,
            "awk": self._check_awk,
            "gawk": self._check_awk,
            "mawk": self._check_awk,
            "hostname": self._check_hostname,
            "uniq": self._check_uniq,
            "xxd": self._check_xxd,
            "env": self._check_env,
            "command": self._check_command,
            "git": self._check_git,
        }

    def check(self, unit: LogicalUnit) -> str | None:
        if unit.opaque:
            return f"'{unit.text}' could not be fully parsed"
        if not unit.argv:
            # bare redirection such as '> file' is judged by its redirects
            return None
        if any(entry.matches(unit) for entry in self.extra):
            return None

        prog = unit.program
        if prog not in READ_ONLY_PROGRAMS:
            return f"'{prog}' is not on the read-only allowlist"

        denied = DENIED_OPTIONS.get(prog, frozenset())
        for arg in unit.args:
            if _is_denied(arg, denied):
                return f"'{prog} {arg}' is not read-only"

        checker = self._checkers.get(prog)
        return checker(unit) if checker is not None else None

    def _check_sed(self, unit: LogicalUnit) -> str | None:
        in_place = "'sed -i' edits files in place"
        scripts: list[str] = []
        positionals: list[str] = []
        args = unit.args
        i = 0
        while i < len(args):
            arg = args[i]
            i += 1
            if arg == "--":
                positionals.extend(args[i:])
                break
            if arg.startswith("--"):
                name, has_value, value = arg.partition("=")
                option = next(
                    (o for o in ("--in-place", "--expression", "--file", "--line-length")
                     if name == o or (len(name) > 2 and o.startswith(name))),
                    None,
                )
                if option == "--in-place":
                    return in_place
                if option is not None and not has_value:
                    value = args[i] if i < len(args) else ""
                    i += 1
                if option == "--expression":
                    scripts.append(value)
                elif option == "--file":
                    return "'sed -f' runs a script file that cannot be checked"
                continue
            if arg.startswith("-") and len(arg) > 1:
                for k, letter in enumerate(arg[1:], start=2):
                    if letter == "i":
                        return in_place
                    if letter in "efl":
                        value = arg[k:]
                        if not value:
                            value = args[i] if i < len(args) else ""
                            i += 1
                        if letter == "e":
                            scripts.append(value)
                        elif letter == "f":
                            return "'sed -f' runs a script file that cannot be checked"
                        break
                continue
            positionals.append(arg)

        if not scripts and positionals:
            scripts.append(positionals[0])
        for script in scripts:
            problem = sed_script_problem(script)
            if problem is not None:
                return problem
        return None

    def _check_pager(self, unit: LogicalUnit) -> str | None:
        for arg in unit.args:
            if arg == "--":
                break
            if arg.startswith("+"):
                return f"'{unit.program} {arg}' runs a pager command on startup"
        return None

    def _check_awk(self, unit: LogicalUnit) -> str | None:
        args = unit.args
        for i, arg in enumerate(args):
            if arg == "-i" and i + 1 < len(args) and args[i + 1] == "inplace":
                return f"'{unit.program} -i inplace' edits files in place"
            if AWK_SIDE_EFFECT_PATTERN.search(arg):
                return f"'{unit.program}' program runs commands or writes files"
        return None

    def _check_hostname(self, unit: LogicalUnit) -> str | None:
        if _positionals(unit.args):
            return "'hostname NAME' changes the hostname"
        return None

    def _check_uniq(self, unit: LogicalUnit) -> str | None:
        if len(_positionals(unit.args, frozenset({"-f", "-s", "-w"}))) > 1:
            return "'uniq' with an output file writes to disk"
        return None

    def _check_xxd(self, unit: LogicalUnit) -> str | None:
        if len(_positionals(unit.args, frozenset({"-c", "-g", "-l", "-s", "-o", "-n"}))) > 1:
            return "'xxd' with an output file writes to disk"
        return None

    def _check_env(self, unit: LogicalUnit) -> str | None:
        if unit.args:
            return "'env' runs another command"
        return None

    def _check_command(self, unit: LogicalUnit) -> str | None:
        if unit.args[:1] in (("-v",), ("-V",)):
            return None
        return "'command' runs another command"

    def _check_git(self, unit: LogicalUnit) -> str | None:
        args = list(unit.args)
        i = 0
        while i < len(args) and args[i].startswith("-"):
            if args[i] in ("-c", "--exec-path") or args[i].startswith("--exec-path="):
                return f"'git {args[i]}' can run arbitrary programs"
            i += 2 if args[i] in ("-C", "--git-dir", "--work-tree", "--namespace") else 1
        if i >= len(args):
            return None
        sub, rest = args[i], args[i + 1:]
        flags = {arg.split("=", 1)[0] for arg in rest}
        if any(arg.startswith(("--output", "--ext-diff")) for arg in rest):
            return f"'git {sub}' writes output files or runs external tools"
        if sub in GIT_READ_ONLY:
            return None
        if sub == "branch":
            if GIT_BRANCH_WRITE_FLAGS & flags:
                return "'git branch' modifies branches"
            if _positionals(rest) and not GIT_LISTING_FLAGS & flags:
                return "'git branch NAME' creates a branch"
            return None
        if sub == "tag":
            if not rest or (GIT_LISTING_FLAGS & flags and not GIT_TAG_WRITE_FLAGS & flags):
                return None
            return "'git tag' creates or deletes tags"
        if sub == "remote":
            if not rest or rest[0] in ("-v", "--verbose", "show", "get-url"):
                return None
            return "'git remote' modifies remotes"
        if sub == "config":
            if GIT_CONFIG_READ_FLAGS & flags or (len(_positionals(rest)) == 1 and "--unset" not in flags):
                return None
            return "'git config' changes configuration"
        if sub == "stash" and rest[:1] in (["list"], ["show"]):
            return None
        if sub == "reflog" and rest[:1] in ([], ["show"]):
            return None
        if sub in ("worktree", "submodule") and rest[:1] in (["list"], ["status"]):
            return None
        return f"'git {sub}' is not read-only"


@dataclass(frozen=True)
class RuleSet:
    """Immutable collection of rules and extra allowlist entries."""

    rules: tuple[Rule, ...] = DEFAULT_RULES
    allow: tuple[AllowEntry, ...] = ()

    @classmethod
    def default(cls) -> "RuleSet":
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any], base: Sequence[Rule] = DEFAULT_RULES) -> "RuleSet":
        """Create a rule set from a dictionary of user rules.

        Args:
            data: Mapping with optional ``block``, ``confirm`` and ``allow`` lists.
            base: Rules the user rules are added to.

        Returns:
            RuleSet with the user rules appended.

        Raises:
            RuleConfigError: If an entry is malformed.
        """
        if not isinstance(data, dict):
            raise RuleConfigError("rules file must contain a mapping")
        unknown = set(data) - {"block", "confirm", "allow"}
        if unknown:
            raise RuleConfigError(
                f"unknown rule sections: {', '.join(sorted(unknown))}",
                details={"sections": sorted(unknown)},
            )

        rules = list(base)
        for section, tier in (("block", BLOCKED), ("confirm", CONFIRM)):
            for i, entry in enumerate(data.get(section) or []):
                rules.append(_user_rule(section, i, entry, tier))

        allow = []
        for entry in data.get("allow") or []:
            if not isinstance(entry, str) or not entry.split():
                raise RuleConfigError(f"allow entries must be non-empty strings, got {entry!r}")
            words = entry.split()
            allow.append(AllowEntry(program=words[0], args=tuple(words[1:])))

        return cls(rules=tuple(rules), allow=tuple(allow))

    @classmethod
    def from_yaml(cls, path: Path | str) -> "RuleSet":
        """Load user rules from a YAML file on top of the defaults.

        Args:
            path: Path to the YAML rules file.

        Returns:
            RuleSet instance; the defaults when the file does not exist.

        Raises:
            RuleConfigError: If the file cannot be read or parsed.
        """
        path = Path(path).expanduser()
        if not path.exists():
            logger.debug("rules_file_missing", path=str(path))
            return cls()

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise RuleConfigError(
                f"cannot load rules file {path}: {e}",
                details={"path": str(path)},
            ) from e

        rule_set = cls.from_dict(data)
        logger.debug(
            "rules_loaded",
            path=str(path),
            rules=len(rule_set.rules) - len(DEFAULT_RULES),
            allow=len(rule_set.allow),
        )
        return rule_set


def _user_rule(section: str, index: int, entry: Any, tier: RiskTier) -> Rule:
    if isinstance(entry, str):
        entry = {"program": entry}
    if not isinstance(entry, dict) or not isinstance(entry.get("program"), str) or not entry["program"]:
        raise RuleConfigError(
            f"{section}[{index}]: each entry needs a 'program' name",
            details={"section": section, "index": index},
        )
    args = entry.get("args") or []
    if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
        raise RuleConfigError(
            f"{section}[{index}]: 'args' must be a list of strings",
            details={"section": section, "index": index},
        )

    program = entry["program"]
    required = tuple(args)
    default_reason = f"'{' '.join((program, *required))}' is listed in the user {section} rules"
    reason = str(entry.get("reason") or default_reason)

    def matcher(unit: LogicalUnit, result: TokenizeResult) -> bool:
        return unit.program == program and all(arg in unit.args for arg in required)

    return Rule(
        name=f"user_{section}_{program}",
        tier=tier,
        reason=reason,
        matcher=matcher,
        kind=RuleKind.ARGUMENTS if required else RuleKind.PROGRAM,
    )


@dataclass
class RuleEngine:
    """Evaluates a rule set against tokenized commands."""

    rule_set: RuleSet = field(default_factory=RuleSet.default)

    def __post_init__(self) -> None:
        self._unit_rules = tuple(r for r in self.rule_set.rules if r.scope == RuleScope.UNIT)
        self._line_rules = tuple(r for r in self.rule_set.rules if r.scope == RuleScope.LINE)
        self.allowlist = ReadOnlyAllowlist(self.rule_set.allow)

    @property
    def rules(self) -> tuple[Rule, ...]:
        return self.rule_set.rules

    def match(self, unit: LogicalUnit, result: TokenizeResult | None = None) -> list[Rule]:
        """Every UNIT rule matching the unit, in rule order."""
        result = result or TokenizeResult(command=unit.text, units=[unit])
        return [rule for rule in self._unit_rules if rule.matcher(unit, result)]

    def evaluate(self, unit: LogicalUnit, result: TokenizeResult) -> list[RuleMatch]:
        """Matches for one unit, each attributed to it."""
        matches = []
        for rule in self._unit_rules:
            match = rule.evaluate(unit, result)
            if match is not None:
                matches.append(match)
        return matches

    def match_line(self, result: TokenizeResult) -> list[RuleMatch]:
        """Matches of LINE rules against the whole command."""
        matches = []
        for rule in self._line_rules:
            match = rule.evaluate(None, result)
            if match is not None:
                matches.append(match)
        return matches
