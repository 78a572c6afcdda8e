"""Wire-format DNS query parsing.

Brief:
  Decodes the header and question section of an RFC 1035 message using
  dnslib. Only the question section is exposed; the pipeline resolves
  ``questions[0]`` and ignores any further questions.

Inputs:
  - Raw wire-format bytes (attacker controlled)

Outputs:
  - DnsQuery, or ParseError for any malformed input
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple, Union

from dnslib import CLASS, QTYPE, DNSHeader, DNSQuestion, DNSRecord
from dnslib.label import DNSBuffer

from teapot.errors import ParseError

logger = logging.getLogger(__name__)

DNS_HEADER_LEN = 12


@dataclass(frozen=True)
class Question:
    """
    Brief: One entry of the question section.

    Inputs (fields):
      - domain_name: FQDN with trailing dot, e.g. "example.com."
      - qtype: Numeric record type (1 = A, 28 = AAAA, ...).
      - qclass: Numeric class (1 = IN).
    """

    domain_name: str
    qtype: int
    qclass: int = 1

    @property
    def qtype_name(self) -> str:
        return str(QTYPE.get(self.qtype, str(self.qtype)))

    @property
    def qclass_name(self) -> str:
        return str(CLASS.get(self.qclass, str(self.qclass)))


@dataclass(frozen=True)
class DnsQuery:
    """
    Brief: A parsed DNS query.

    Inputs (fields):
      - wire_bytes: Original message bytes.
      - questions: Parsed question section in message order.

    Outputs:
      - DnsQuery; ``first_question`` is the only question resolved.
    """

    wire_bytes: bytes
    questions: Tuple[Question, ...]

    @property
    def first_question(self) -> Question:
        if not self.questions:
            raise ParseError("DNS message carries no question")
        return self.questions[0]


def parse_query(wire_bytes: Union[bytes, bytearray, memoryview]) -> DnsQuery:
    """
    Brief: Parse the header and question section of a DNS message.

    Inputs:
      - wire_bytes: Raw wire-format message.

    Outputs:
      - DnsQuery with at least one question.

    Raises:
      - ParseError: Truncated header, invalid label length, bad compression
        pointer, truncated question, or an empty question section.

    Example:
      >>> q = parse_query(encode_query("example.com", "A"))
      >>> q.first_question.domain_name
      'example.com.'
    """

    data = bytes(wire_bytes)
    if len(data) < DNS_HEADER_LEN:
        raise ParseError(
            f"message is {len(data)} bytes, shorter than the {DNS_HEADER_LEN}-byte header"
        )

    buffer = DNSBuffer(data)
    try:
        header = DNSHeader.parse(buffer)
        questions = []
        for _ in range(header.q):
            q = DNSQuestion.parse(buffer)
            questions.append(
                Question(
                    domain_name=str(q.qname).lower(),
                    qtype=int(q.qtype),
                    qclass=int(q.qclass),
                )
            )
    except Exception as exc:
        # dnslib reports most failures as DNSError but buffer/label edge cases
        # surface as other types; all of them are malformed client input.
        raise ParseError(f"malformed DNS message: {exc}") from exc

    if not questions:
        raise ParseError("DNS message carries no question")
    if len(questions) > 1:
        logger.debug("ignoring %d extra question(s)", len(questions) - 1)

    return DnsQuery(wire_bytes=data, questions=tuple(questions))


def encode_query(domain_name: str, qtype: Union[str, int] = "A") -> bytes:
    """
    Brief: Build a wire-format query for a single question.

    Inputs:
      - domain_name: Name to query; a trailing dot is optional.
      - qtype: Type name ("A", "AAAA", ...) or number.

    Outputs:
      - bytes: Packed DNS query with recursion desired.
    """

    if isinstance(qtype, int):
        qtype = QTYPE.get(qtype)
    return DNSRecord.question(domain_name, str(qtype)).pack()
