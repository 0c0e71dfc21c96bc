#  BSD 3-Clause License
#
#  Copyright (c) 2019, Elasticsearch BV
#  All rights reserved.
#
#  Redistribution and use in source and binary forms, with or without
#  modification, are permitted provided that the following conditions are met:
#
#  * Redistributions of source code must retain the above copyright notice, this
#    list of conditions and the following disclaimer.
#
#  * Redistributions in binary form must reproduce the above copyright notice,
#    this list of conditions and the following disclaimer in the documentation
#    and/or other materials provided with the distribution.
#
#  * Neither the name of the copyright holder nor the names of its
#    contributors may be used to endorse or promote products derived from
#    this software without specific prior written permission.
#
#  THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
#  AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
#  IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE
#  DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE
#  FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL
#  DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR
#  SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER
#  CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY,
#  OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE
#  OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

from types import MappingProxyType
from typing import Any, Callable, Mapping, NamedTuple, Optional, Tuple

from dbcapture.utils.logging import get_logger

logger = get_logger("dbcapture.instrument")


class DbInfo(NamedTuple):
    """
    Connection metadata, derived once per connection.

    `connection_string` must not contain credentials; it is expected to hold
    scheme, host and port only.
    """

    system: Optional[str] = None
    user: Optional[str] = None
    name: Optional[str] = None
    db: Optional[str] = None
    connection_string: Optional[str] = None


class DbRequest(NamedTuple):
    db_info: DbInfo
    statement: Optional[str]
    param_values: Mapping[int, Any]


def assemble(db_info, raw_statement, captured_parameters=None) -> Optional[DbRequest]:
    """
    Builds the request record of one logical call.

    Returns None if the connection metadata could not be resolved, which
    signals the caller to skip interception of this call.

    The captured parameters are copied, later changes to the parameter store
    do not affect the returned request.
    """
    if db_info is None:
        return None
    params = MappingProxyType(dict(captured_parameters or {}))
    return DbRequest(db_info, raw_statement, params)


def assemble_from(
    resolver: Callable[[Any], Tuple[Optional[DbInfo], Optional[str]]], target, captured_parameters=None
) -> Optional[DbRequest]:
    """
    Like `assemble`, but resolves connection metadata and raw statement from
    `target` with the given resolver. Failures of the resolver, e.g. because
    the connection is already closed, yield None.
    """
    try:
        db_info, raw_statement = resolver(target)
    except Exception:
        logger.debug("Could not resolve connection context of %r", target, exc_info=True)
        return None
    return assemble(db_info, raw_statement, captured_parameters)
