# archstrap/utils/config_patch.py
"""
Text substitutions applied to system configuration files.

Each edit matches an exact marker that the stock Arch Linux files ship with. The
markers are kept verbatim so existing files keep matching; a file without the
marker is left untouched and the caller is told so.
"""
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

PathLike = Union[str, Path]

# --- Markers ---

MULTILIB_DISABLED = "#[multilib]\n#Include = /etc/pacman.d/mirrorlist"
MULTILIB_ENABLED = "[multilib]\nInclude = /etc/pacman.d/mirrorlist"

LOCALE_DISABLED = "#en_US.UTF-8"
LOCALE_ENABLED = "en_US.UTF-8"

GRUB_CMDLINE_MARKER = "loglevel=3 quiet"

MKINITCPIO_STOCK_HOOKS = ["base", "udev", "autodetect", "modconf", "block", "filesystems", "keyboard", "fsck"]


def patch_text(text: str, old: str, new: str) -> Tuple[str, bool]:
    """Replaces every occurrence of `old`; returns the new text and whether anything matched."""
    if old not in text:
        return text, False
    return text.replace(old, new), True


def patch_file(path: PathLike, old: str, new: str) -> bool:
    """
    Replaces `old` with `new` in the file at `path`.

    Returns:
        True when the marker was found and the file rewritten, False when the file
        did not contain the marker (nothing is written in that case).
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    patched, changed = patch_text(text, old, new)
    if changed:
        path.write_text(patched, encoding="utf-8")
    return changed


def append_line(path: PathLike, line: str) -> None:
    with open(path, "a", encoding="utf-8") as f:
        f.write(line if line.endswith("\n") else line + "\n")


# --- pacman.conf ---

def enable_multilib(path: PathLike = "/etc/pacman.conf") -> bool:
    return patch_file(path, MULTILIB_DISABLED, MULTILIB_ENABLED)


# --- locale.gen ---

def enable_locale(path: PathLike = "/etc/locale.gen") -> bool:
    return patch_file(path, LOCALE_DISABLED, LOCALE_ENABLED)


# --- mkinitcpio.conf ---

def format_hooks(hooks: List[str]) -> str:
    return f"HOOKS=({' '.join(hooks)})"


def mkinitcpio_hooks(encrypt: bool) -> Tuple[str, str]:
    """
    Returns the (stock, wanted) HOOKS lines. The keyboard hook moves in front of
    filesystems so the passphrase prompt has a keyboard; `encrypt` is inserted
    right after it when the root volume is encrypted.
    """
    target = MKINITCPIO_STOCK_HOOKS[0:5] + ["keyboard"]
    if encrypt:
        target.append("encrypt")
    target += ["filesystems", "fsck"]
    return format_hooks(MKINITCPIO_STOCK_HOOKS), format_hooks(target)


def set_mkinitcpio_hooks(encrypt: bool, path: PathLike = "/etc/mkinitcpio.conf") -> bool:
    source, target = mkinitcpio_hooks(encrypt)
    return patch_file(path, source, target)


# --- /etc/default/grub ---

def grub_cmdline(uuid: str, crypt_mapping: Optional[str]) -> str:
    if crypt_mapping:
        return f"{GRUB_CMDLINE_MARKER} cryptdevice=UUID={uuid}:{crypt_mapping} root=/dev/mapper/{crypt_mapping}"
    return GRUB_CMDLINE_MARKER


def set_grub_cmdline(uuid: str, crypt_mapping: Optional[str], path: PathLike = "/etc/default/grub") -> bool:
    cmdline = grub_cmdline(uuid, crypt_mapping)
    if cmdline == GRUB_CMDLINE_MARKER:
        return False
    return patch_file(path, GRUB_CMDLINE_MARKER, cmdline)


# --- /etc/sudoers ---

def sudoers_line(user: str) -> str:
    return f"{user} ALL=(ALL) ALL"


def sudoers_nopasswd_line(user: str) -> str:
    return f"{user} ALL=(ALL) NOPASSWD: ALL"


def grant_sudo(user: str, path: PathLike = "/etc/sudoers") -> None:
    append_line(path, sudoers_line(user))


def sudo_passwd_off(user: str, path: PathLike = "/etc/sudoers") -> bool:
    return patch_file(path, f"\n{sudoers_line(user)}", f"\n{sudoers_nopasswd_line(user)}")


def sudo_passwd_on(user: str, path: PathLike = "/etc/sudoers") -> bool:
    return patch_file(path, f"\n{sudoers_nopasswd_line(user)}", f"\n{sudoers_line(user)}")


@contextmanager
def passwordless_sudo(user: str, path: PathLike = "/etc/sudoers") -> Iterator[bool]:
    """Lifts the password requirement for `user` for the duration of the block."""
    toggled = sudo_passwd_off(user, path)
    try:
        yield toggled
    finally:
        if toggled:
            sudo_passwd_on(user, path)
