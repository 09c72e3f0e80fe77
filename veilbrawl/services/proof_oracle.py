"""Proof oracle boundary for round-plan proofs.

The oracle accepts (proof, public inputs, context) and answers accept/reject
plus the backend that decided. A rejection is a normal result; only an
unreachable backend raises (OracleUnavailable).
"""

import asyncio
import base64
import json
import logging
import os
import shlex
import tempfile
from dataclasses import dataclass
from typing import Any, Optional

from veilbrawl.utils.commit_reveal import canonical_json

logger = logging.getLogger(__name__)


class OracleUnavailable(Exception):
    """The verifier could not be run (missing binary, timeout, bad config)."""


@dataclass(frozen=True)
class VerificationContext:
    """Binds a proof to one match and one claimed signer."""

    match_id: str
    player_address: str
    round_number: int
    transcript_hash: str = ""


@dataclass(frozen=True)
class VerificationResult:
    accepted: bool
    backend: str
    output: str = ""


class ProofOracle:
    """Base oracle; subclasses implement verify."""

    backend = "none"

    async def verify(self, proof: str, public_inputs: Any, context: VerificationContext) -> VerificationResult:
        raise NotImplementedError


class DisabledProofOracle(ProofOracle):
    """Accepts everything. Local testing only; strict mode refuses it."""

    backend = "disabled"

    async def verify(self, proof: str, public_inputs: Any, context: VerificationContext) -> VerificationResult:
        return VerificationResult(True, self.backend, "verification disabled")


def _decode_maybe_base64(value: Any) -> Optional[bytes]:
    if isinstance(value, str) and value.startswith("base64:"):
        return base64.b64decode(value[len("base64:"):])
    return None


class ExternalCommandOracle(ProofOracle):
    """Runs an external verifier command; exit code 0 means accepted.

    The command template may reference {VK_PATH}, {PROOF_PATH},
    {PUBLIC_INPUTS_PATH}, {MATCH_ID}, {WINNER_ADDRESS} and {TRANSCRIPT_HASH}.
    """

    backend = "external"

    def __init__(self, command_template: str, vk_path: str, timeout_seconds: float = 30.0):
        self.command_template = command_template
        self.vk_path = vk_path
        self.timeout_seconds = timeout_seconds

    def build_command(self, proof_path: str, public_inputs_path: str, context: VerificationContext) -> list[str]:
        parts = shlex.split(self.command_template)
        if not parts:
            raise OracleUnavailable("Verifier command is empty")
        replacements = {
            "{VK_PATH}": self.vk_path,
            "{PROOF_PATH}": proof_path,
            "{PUBLIC_INPUTS_PATH}": public_inputs_path,
            "{MATCH_ID}": context.match_id,
            "{WINNER_ADDRESS}": context.player_address,
            "{TRANSCRIPT_HASH}": context.transcript_hash,
        }
        command = []
        for part in parts:
            for token, value in replacements.items():
                part = part.replace(token, value)
            command.append(part)
        return command

    async def verify(self, proof: str, public_inputs: Any, context: VerificationContext) -> VerificationResult:
        if not self.vk_path:
            raise OracleUnavailable("ZK verification is enabled but ZK_VK_PATH is not configured")

        with tempfile.TemporaryDirectory(prefix="veilbrawl-zk-") as workdir:
            proof_path = os.path.join(workdir, "proof.bin")
            inputs_path = os.path.join(workdir, "public_inputs.json")

            proof_bytes = _decode_maybe_base64(proof)
            with open(proof_path, "wb") as f:
                f.write(proof_bytes if proof_bytes is not None else proof.encode("utf-8"))

            input_bytes = _decode_maybe_base64(public_inputs)
            with open(inputs_path, "wb") as f:
                if input_bytes is not None:
                    f.write(input_bytes)
                else:
                    f.write(canonical_json(public_inputs if public_inputs is not None else []).encode("utf-8"))

            command = self.build_command(proof_path, inputs_path, context)
            try:
                proc = await asyncio.create_subprocess_exec(
                    *command,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                raise OracleUnavailable(f"Could not start verifier: {exc}") from exc

            try:
                stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError as exc:
                proc.kill()
                await proc.wait()
                raise OracleUnavailable(f"Verifier timed out after {self.timeout_seconds}s") from exc

        output = f"{stdout.decode('utf-8', 'replace')}\n{stderr.decode('utf-8', 'replace')}".strip()
        if proc.returncode != 0:
            logger.info("Proof rejected for match %s (exit=%s, inputs=%s)", context.match_id,
                        proc.returncode, describe_public_inputs(public_inputs))
            return VerificationResult(False, self.backend, output)
        return VerificationResult(True, self.backend, output)


def build_proof_oracle(settings=None) -> ProofOracle:
    """Create the oracle selected by configuration."""
    if settings is None:
        from veilbrawl.config import settings
    if not settings.zk_verify_enabled:
        return DisabledProofOracle()
    return ExternalCommandOracle(settings.zk_verify_cmd, settings.zk_vk_path, settings.zk_verify_timeout_seconds)


def describe_public_inputs(public_inputs: Any) -> str:
    """Short printable form of public inputs for log lines."""
    text = json.dumps(public_inputs, default=str)
    return text if len(text) <= 120 else text[:117] + "..."
