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

import logging
import logging.handlers
import os
import tempfile

import pytest

import dbcapture
import dbcapture.conf
from dbcapture.base import Client
from dbcapture.context import execution_context
from dbcapture.traces import Tracer


class TempStoreTracer(Tracer):
    """Tracer that keeps finished spans in memory"""

    def __init__(self, config=None, extractor=None):
        super(TempStoreTracer, self).__init__(config=config, extractor=extractor)
        self.spans = []

    def report(self, span):
        super(TempStoreTracer, self).report(span)
        self.spans.append(span)


class TempStoreClient(Client):
    def __init__(self, config=None, **inline):
        inline.setdefault("tracer_cls", TempStoreTracer)
        super(TempStoreClient, self).__init__(config, **inline)

    @property
    def spans(self):
        return self.tracer.spans


@pytest.fixture()
def dbcapture_client(request):
    client_config = dict(getattr(request, "param", {}))
    client_config.setdefault("instrument", False)
    client = TempStoreClient(**client_config)
    yield client
    client.close()
    # clear any execution context that might linger around
    execution_context.clear()


@pytest.fixture()
def dbcapture_client_log_file(request):
    client_config = dict(getattr(request, "param", {}))
    client_config.setdefault("instrument", False)
    client_config.setdefault("log_level", "warning")

    logger = logging.getLogger("dbcapture")
    original_level = logger.level
    dbcapture.conf.logfile_set_up = False

    tmp = tempfile.NamedTemporaryFile(delete=False)
    tmp.close()
    client_config["log_file"] = tmp.name

    client = TempStoreClient(**client_config)
    yield client
    client.close()

    # delete our tmpfile
    logger.setLevel(original_level)
    dbcapture.conf.logfile_set_up = False
    for handler in list(logger.handlers):
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            handler.close()
            logger.removeHandler(handler)
    os.unlink(tmp.name)
    execution_context.clear()


@pytest.fixture()
def instrument():
    dbcapture.instrument()
    yield
    dbcapture.uninstrument()


@pytest.fixture()
def clean_context():
    execution_context.clear()
    yield execution_context
    execution_context.clear()
