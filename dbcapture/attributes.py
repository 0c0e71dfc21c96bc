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

"""Extraction of database client span attributes

The extractor reads request data only through a `SqlClientAttributesGetter`,
so it works for any client library that provides a getter for its request
type.
"""

from types import MappingProxyType

from dbcapture.conf import constants
from dbcapture.sanitizer import CALL, UNKNOWN, sanitize
from dbcapture.utils.encoding import shorten
from dbcapture.utils.logging import get_logger

logger = get_logger("dbcapture.attributes")


class SqlClientAttributesGetter(object):
    """
    Capability interface of SQL client requests. All methods may return None.
    """

    def get_system(self, request):
        raise NotImplementedError

    def get_user(self, request):
        raise NotImplementedError

    def get_name(self, request):
        raise NotImplementedError

    def get_connection_string(self, request):
        raise NotImplementedError

    def get_raw_statement(self, request):
        raise NotImplementedError

    def get_param_values(self, request):
        """
        Returns a mapping of 1-based positional index to bound value
        """
        raise NotImplementedError


class DbRequestAttributesGetter(SqlClientAttributesGetter):
    def get_system(self, request):
        return request.db_info.system

    def get_user(self, request):
        return request.db_info.user

    def get_name(self, request):
        db_info = request.db_info
        return db_info.db if db_info.name is None else db_info.name

    def get_connection_string(self, request):
        return request.db_info.connection_string

    def get_raw_statement(self, request):
        return request.statement

    def get_param_values(self, request):
        return request.param_values


def _format_value(value):
    if value is None:
        return "NULL"
    if isinstance(value, str):
        return "'%s'" % value.replace("'", "''")
    return str(value)


def format_param_values(param_values):
    """
    Renders bound parameters as a positional list, e.g. {1: "abc", 3: 42}
    becomes "['abc', , 42]". Indices that were never bound leave an empty
    slot. Returns None if there are no parameters.
    """
    if not param_values:
        return None
    indices = [idx for idx in param_values if isinstance(idx, int) and not isinstance(idx, bool)]
    if not indices:
        return None
    slots = []
    for idx in range(min(indices), max(indices) + 1):
        slots.append(_format_value(param_values[idx]) if idx in param_values else "")
    return "[" + ", ".join(slots) + "]"


class SqlClientAttributesExtractor(object):
    def __init__(
        self,
        getter=None,
        capture_parameters=False,
        table_attribute_key=constants.DB_SQL_TABLE,
        statement_max_length=constants.STATEMENT_MAX_LENGTH,
    ):
        self.getter = getter or DbRequestAttributesGetter()
        self.capture_parameters = capture_parameters
        self.table_attribute_key = table_attribute_key
        self.statement_max_length = statement_max_length

    @classmethod
    def from_config(cls, config, getter=None):
        return cls(
            getter=getter,
            capture_parameters=config.capture_parameters,
            table_attribute_key=config.table_attribute_key,
            statement_max_length=config.statement_max_length,
        )

    def extract(self, request):
        """
        Builds the attribute set of `request`.

        Every step is isolated: if one of them fails, the failure is logged
        and the attributes of the remaining steps are still set.
        """
        attributes = {}
        self._isolated(self._connection_attributes, request, attributes)
        sanitized = self._isolated(self._statement_attributes, request, attributes)
        self._isolated(self._param_attributes, request, attributes)
        if sanitized is not None:
            self._isolated(self._table_attributes, sanitized, attributes)
        return MappingProxyType(attributes)

    def _isolated(self, step, *args):
        try:
            return step(*args)
        except Exception:
            logger.debug("Attribute extraction step %s failed", step.__name__, exc_info=True)
            return None

    def _connection_attributes(self, request, attributes):
        for key, method in (
            (constants.DB_SYSTEM, self.getter.get_system),
            (constants.DB_USER, self.getter.get_user),
            (constants.DB_NAME, self.getter.get_name),
            (constants.DB_CONNECTION_STRING, self.getter.get_connection_string),
        ):
            try:
                _set(attributes, key, method(request))
            except Exception:
                logger.debug("Failed to extract %s", key, exc_info=True)

    def _statement_attributes(self, request, attributes):
        sanitized = sanitize(self.getter.get_raw_statement(request))
        _set(attributes, constants.DB_STATEMENT, shorten(sanitized.full_statement, self.statement_max_length))
        _set(attributes, constants.DB_OPERATION, sanitized.operation)
        return sanitized

    def _param_attributes(self, request, attributes):
        if not self.capture_parameters:
            return
        _set(attributes, constants.DB_STATEMENT_VALUES, format_param_values(self.getter.get_param_values(request)))

    def _table_attributes(self, sanitized, attributes):
        # a stored procedure is not a table
        if sanitized.operation == CALL:
            return
        _set(attributes, self.table_attribute_key, sanitized.main_identifier)


def _set(attributes, key, value):
    if value is None or value == "":
        return
    attributes[key] = value


def span_name(attributes, table_attribute_key=constants.DB_SQL_TABLE) -> str:
    """
    Name of a database client span, e.g. "SELECT shop.orders".

    Falls back to the database name, and to "DB Query" if neither operation
    nor database name are known.
    """
    operation = attributes.get(constants.DB_OPERATION)
    name = attributes.get(constants.DB_NAME)
    if not operation or operation == UNKNOWN:
        return name or constants.DEFAULT_SPAN_NAME
    table = attributes.get(table_attribute_key)
    if table:
        target = "%s.%s" % (name, table) if name else table
    else:
        target = name
    return "%s %s" % (operation, target) if target else operation
