"""
Local stand-in for the remote key file store.

Keys live as .xlsx files under a source directory. `fetch` copies one into the
download staging area for editing; `store` copies a finished artifact to a
destination directory. The original file is never written to.
"""

import os
import shutil

KEY_SUFFIX = ".xlsx"


class LocalKeyFileStore:
    def __init__(self, source_dir: str):
        self.source_dir = os.path.abspath(source_dir)

    def resolve(self, identifier: str) -> str:
        """Find the key file for a path or a bare key name (with or without .xlsx)."""
        raw = os.path.expanduser(str(identifier).strip())
        candidates = [raw]
        if not os.path.isabs(raw):
            candidates.append(os.path.join(self.source_dir, raw))
            if not raw.lower().endswith(KEY_SUFFIX):
                candidates.append(os.path.join(self.source_dir, raw + KEY_SUFFIX))
        elif not raw.lower().endswith(KEY_SUFFIX):
            candidates.append(raw + KEY_SUFFIX)
        for path in candidates:
            if os.path.isfile(path):
                return os.path.abspath(path)
        raise FileNotFoundError(f"key file not found: {identifier} (looked in {self.source_dir})")

    def key_name(self, identifier: str) -> str:
        return os.path.splitext(os.path.basename(self.resolve(identifier)))[0]

    def origin_directory(self, identifier: str) -> str:
        """Name of the folder the key file lives in."""
        return os.path.basename(os.path.dirname(self.resolve(identifier)))

    def fetch(self, identifier: str, download_dir: str) -> str:
        src = self.resolve(identifier)
        os.makedirs(download_dir, exist_ok=True)
        dest = os.path.join(os.path.abspath(download_dir), self.key_name(identifier) + KEY_SUFFIX)
        if os.path.abspath(src) != dest:
            shutil.copy2(src, dest)
        print(f"[INFO] Fetched: {src} -> {dest}")
        return dest

    def store(self, local_path: str, destination: str) -> str:
        os.makedirs(destination, exist_ok=True)
        dest = os.path.join(os.path.abspath(destination), os.path.basename(local_path))
        if os.path.abspath(local_path) != dest:
            shutil.copy2(local_path, dest)
        print(f"[OK]   stored {os.path.basename(local_path)} -> {dest}")
        return dest
