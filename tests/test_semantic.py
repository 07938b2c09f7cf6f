import subprocess
import tempfile
import threading
import time
import unittest

from goinst.errors import SemanticLoadError
from goinst.injector import Injector
from goinst.parser import parse_source
from goinst.printer import print_source
from goinst.remover import Remover
from goinst.semantic import SemanticCache, parse_methods, qualify
from goinst.transformers import aerospike


GO_DOC = """package aerospike // import "github.com/aerospike/aerospike-client-go/v6"

type Client struct {
	// Has unexported fields.
}

func NewClient(hostname string, port int) (*Client, Error)
func (clnt *Client) Close()
func (clnt *Client) Get(policy *BasePolicy, key *Key, binNames ...string) (*Record, Error)
func (clnt *Client) Put(policy *WritePolicy, key *Key, binMap BinMap) Error
func (clnt *Client) Operate(policy *WritePolicy, key *Key, operations ...*Operation) (*OperateResult, Error)
func (clnt *Client) BatchGet(policy *BatchPolicy, keys []*Key, binNames ...string) (records []*Record, err Error)
"""

STORE = """package store

import (
\tas "github.com/aerospike/aerospike-client-go/v6"
)

func Read(client *as.Client, key *as.Key) (*as.Record, error) {
\trec, err := client.Get(nil, key)
\treturn rec, err
}

func Update(client *as.Client, key *as.Key, ops []*as.Operation) error {
\t_, err := client.Operate(nil, key, ops...)
\treturn err
}
"""


PLAIN_STORE = """package store

import (
\t"github.com/aerospike/aerospike-client-go/v6"
)

func Connect() (*aerospike.Client, error) {
\tclient, err := aerospike.NewClient("127.0.0.1", 3000)
\treturn client, err
}

func Read(client *aerospike.Client, key *aerospike.Key) (*aerospike.Record, error) {
\trec, err := client.Get(nil, key)
\treturn rec, err
}
"""


def runner_for(stdout, returncode=0, calls=None, delay=0.0):
    def run(args, **kwargs):
        if calls is not None:
            calls.append((args, kwargs.get("cwd")))
        if delay:
            time.sleep(delay)
        return subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr="exit status 1\n")
    return run


def missing_go(args, **kwargs):
    raise FileNotFoundError("go")


class GoDocParsingTests(unittest.TestCase):
    def test_methods_of_receiver(self) -> None:
        methods = parse_methods(GO_DOC, "Client")
        self.assertEqual(sorted(methods), ["BatchGet", "Close", "Get", "Operate", "Put"])
        self.assertEqual(methods["Get"].results, ["*Record", "Error"])
        self.assertTrue(methods["Get"].returns_value_and_error())
        self.assertTrue(methods["Put"].returns_only_error())
        self.assertEqual(methods["Close"].results, [])

    def test_named_results(self) -> None:
        methods = parse_methods(GO_DOC, "Client")
        self.assertEqual(methods["BatchGet"].results, ["[]*Record", "Error"])

    def test_qualify(self) -> None:
        self.assertEqual(qualify("[]*Record", "as"), "[]*as.Record")
        self.assertEqual(qualify("map[string]interface{}", "as"), "map[string]interface{}")
        self.assertEqual(qualify("bool", "as"), "bool")


class SemanticCacheTests(unittest.TestCase):
    def test_load_once_per_directory(self) -> None:
        calls = []
        cache = SemanticCache(runner=runner_for(GO_DOC, calls=calls))
        with tempfile.TemporaryDirectory() as tmp:
            first = cache.methods(tmp, "github.com/aerospike/aerospike-client-go/v6")
            second = cache.methods(tmp, "github.com/aerospike/aerospike-client-go/v6")
        self.assertIs(first, second)
        self.assertEqual(len(calls), 1)
        self.assertEqual(calls[0][0], ["go", "doc", "github.com/aerospike/aerospike-client-go/v6", "Client"])

    def test_concurrent_requests_share_one_load(self) -> None:
        calls = []
        cache = SemanticCache(runner=runner_for(GO_DOC, calls=calls, delay=0.05))
        results = []

        def worker() -> None:
            results.append(cache.methods("/tmp/goinst-shared", "github.com/aerospike/aerospike-client-go/v6"))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(len(calls), 1)
        self.assertEqual(cache.loads, 1)
        self.assertEqual(len(results), 4)
        self.assertTrue(all(r is results[0] for r in results))

    def test_failure_is_cached(self) -> None:
        calls = []
        cache = SemanticCache(runner=runner_for("", returncode=1, calls=calls))
        for _ in range(2):
            with self.assertRaises(SemanticLoadError):
                cache.methods("/tmp/goinst-broken", "github.com/aerospike/aerospike-client-go/v6")
        self.assertEqual(len(calls), 1)

    def test_missing_toolchain(self) -> None:
        cache = SemanticCache(runner=missing_go)
        with self.assertRaises(SemanticLoadError):
            cache.methods("/tmp/goinst-nogo", "github.com/aerospike/aerospike-client-go/v6")

    def test_timeout(self) -> None:
        def slow(args, **kwargs):
            raise subprocess.TimeoutExpired(args, kwargs.get("timeout"))
        cache = SemanticCache(timeout=0.1, runner=slow)
        with self.assertRaises(SemanticLoadError):
            cache.methods("/tmp/goinst-slow", "github.com/aerospike/aerospike-client-go/v6")


class AerospikeWrappingTests(unittest.TestCase):
    def test_fallback_table_without_directory(self) -> None:
        unit = parse_source(STORE)
        self.assertTrue(aerospike.inject(unit, None))
        out = print_source(unit)
        self.assertIn(
            "\trec, err := whatapas.WrapGet(context.Background(), client, key, nil, func() (*as.Record, error) {\n"
            "\t\treturn client.Get(nil, key)\n"
            "\t})\n",
            out,
        )
        self.assertIn(
            'whatapsql.Wrap(context.Background(), whatapas.GetDbhost(client), "Operate", '
            "func() (*as.Record, error) {",
            out,
        )
        self.assertIn('"github.com/whatap/go-api/instrumentation/github.com/aerospike/aerospike-client-go/v6/whatapas"', out)
        self.assertIn('"context"', out)

    def test_semantic_types_from_module(self) -> None:
        unit = parse_source(STORE)
        cache = SemanticCache(runner=runner_for(GO_DOC))
        self.assertTrue(aerospike.semantic_inject(unit, "/tmp/goinst-aero", cache))
        out = print_source(unit)
        self.assertIn('"Operate", func() (*as.OperateResult, error) {', out)

    def test_semantic_load_failure_falls_back(self) -> None:
        unit = parse_source(STORE)
        cache = SemanticCache(runner=missing_go)
        self.assertTrue(aerospike.semantic_inject(unit, "/tmp/goinst-aero-nogo", cache))
        out = print_source(unit)
        self.assertIn('"Operate", func() (*as.Record, error) {', out)

    def test_error_only_methods(self) -> None:
        text = STORE.replace("rec, err := client.Get(nil, key)", "err := client.Touch(nil, key)").replace(
            "return rec, err", "return nil, err"
        )
        unit = parse_source(text)
        aerospike.inject(unit, None)
        out = print_source(unit)
        self.assertIn(
            'err := whatapsql.WrapError(context.Background(), whatapas.GetDbhost(client), "Touch", func() error {',
            out,
        )

    def test_new_client_host(self) -> None:
        text = (
            "package main\n\nimport (\n\tas \"github.com/aerospike/aerospike-client-go/v6\"\n)\n\n"
            "func connect() (*as.Client, error) {\n\tclient, err := as.NewClient(\"127.0.0.1\", 3000)\n"
            "\treturn client, err\n}\n"
        )
        unit = parse_source(text)
        aerospike.inject(unit, None)
        out = print_source(unit)
        self.assertIn(
            'client, err := whatapsql.WrapOpen(context.Background(), "aerospike", func() (*as.Client, error) {', out
        )

    def test_unwrap_round_trip(self) -> None:
        instrumented, entry = Injector().inject_source(STORE, "store.go")
        self.assertEqual(entry.transformers, ["aerospike"])
        self.assertIn('whatapsql "github.com/whatap/go-api/sql"', instrumented)
        restored, entry = Remover().remove_source(instrumented, "store.go")
        self.assertIn("aerospike", entry.transformers)
        self.assertEqual(restored, STORE)

    def test_unaliased_client_import(self) -> None:
        unit = parse_source(PLAIN_STORE)
        self.assertTrue(aerospike.inject(unit, None))
        out = print_source(unit)
        self.assertIn(
            'client, err := whatapsql.WrapOpen(context.Background(), "aerospike", '
            "func() (*aerospike.Client, error) {\n"
            '\t\treturn aerospike.NewClient("127.0.0.1", 3000)\n',
            out,
        )
        self.assertIn(
            "rec, err := whatapas.WrapGet(context.Background(), client, key, nil, func() (*aerospike.Record, error) {",
            out,
        )
        self.assertNotIn("aerospike-client-go.", out)

    def test_unaliased_round_trip(self) -> None:
        instrumented, _ = Injector().inject_source(PLAIN_STORE, "store.go")
        self.assertIn('\t"context"\n', instrumented)
        restored, _ = Remover().remove_source(instrumented, "store.go")
        self.assertEqual(restored, PLAIN_STORE)

    def test_aliased_context_import(self) -> None:
        text = (
            "package store\n\nimport (\n\tstdctx \"context\"\n\n"
            "\tas \"github.com/aerospike/aerospike-client-go/v6\"\n)\n\n"
            "func Touch(ctx stdctx.Context, client *as.Client, key *as.Key) error {\n"
            "\t_ = ctx\n\terr := client.Touch(nil, key)\n\treturn err\n}\n"
        )
        unit = parse_source(text)
        self.assertTrue(aerospike.inject(unit, None))
        out = print_source(unit)
        self.assertIn(
            'err := whatapsql.WrapError(stdctx.Background(), whatapas.GetDbhost(client), "Touch", func() error {',
            out,
        )
        self.assertNotIn("context.Background()", out.replace("stdctx.Background()", ""))
        self.assertEqual(out.count('"context"'), 1)


if __name__ == "__main__":
    unittest.main()
