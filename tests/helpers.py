"""Test doubles shared by the test modules."""

import io
import tarfile
import threading
import time
import zlib
from typing import Dict, List, Optional

import numpy as np
from tokenizers import Tokenizer
from tokenizers.models import WordLevel
from tokenizers.pre_tokenizers import Whitespace
from tokenizers.processors import TemplateProcessing

from flagembed.common.errors import InferenceError
from flagembed.encoders.tensors import TensorBuffer

VOCAB = {
    "[PAD]": 0,
    "[UNK]": 1,
    "[CLS]": 2,
    "[SEP]": 3,
    "hello": 4,
    "world": 5,
    "foo": 6,
    "bar": 7,
    "query": 8,
    "passage": 9,
    ":": 10,
}


def make_tokenizer() -> Tokenizer:
    """Small BERT-like tokenizer: whitespace words, ``[CLS] ... [SEP]`` template."""
    tokenizer = Tokenizer(WordLevel(VOCAB, unk_token="[UNK]"))
    tokenizer.pre_tokenizer = Whitespace()
    tokenizer.post_processor = TemplateProcessing(
        single="[CLS] $A [SEP]",
        special_tokens=[("[CLS]", VOCAB["[CLS]"]), ("[SEP]", VOCAB["[SEP]"])],
    )
    return tokenizer


def build_archive(files: Dict[str, bytes], top_dir: Optional[str] = None, symlink: Optional[str] = None) -> bytes:
    """Build a ``.tar.gz`` in memory; entries go under ``top_dir`` when given."""
    buffer = io.BytesIO()
    prefix = f"{top_dir}/" if top_dir else ""
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        if top_dir:
            info = tarfile.TarInfo(top_dir)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            archive.addfile(info)
        for name, data in files.items():
            info = tarfile.TarInfo(prefix + name)
            info.size = len(data)
            info.mode = 0o644
            archive.addfile(info, io.BytesIO(data))
        if symlink:
            info = tarfile.TarInfo(prefix + symlink)
            info.type = tarfile.SYMTYPE
            info.linkname = "/etc/passwd"
            archive.addfile(info)
    return buffer.getvalue()


class FakeInferencePort:
    """Deterministic stand-in for the ONNX forward pass.

    Each row's hidden states are drawn from a generator seeded with the CRC of
    its token ids, so identical inputs always produce identical outputs.
    """

    def __init__(self, hidden_dim: int = 384, fail_on_id: Optional[int] = None, delay: float = 0.0):
        self.hidden_dim = hidden_dim
        self.fail_on_id = fail_on_id
        self.delay = delay
        self.calls: List[np.ndarray] = []
        self._lock = threading.Lock()

    def infer(self, ids: TensorBuffer, mask: TensorBuffer, type_ids: TensorBuffer,
              batch_size: int, max_length: int) -> TensorBuffer:
        id_rows = ids.as_array()
        with self._lock:
            self.calls.append(id_rows.copy())
        if self.delay:
            time.sleep(self.delay)
        if self.fail_on_id is not None and np.any(id_rows == self.fail_on_id):
            raise InferenceError("engine exploded")

        hidden = np.empty((batch_size, max_length, self.hidden_dim), dtype=np.float32)
        for row in range(batch_size):
            seed = zlib.crc32(id_rows[row].tobytes())
            hidden[row] = np.random.default_rng(seed).standard_normal((max_length, self.hidden_dim))
        return TensorBuffer.from_array(hidden)
