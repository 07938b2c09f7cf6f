import unittest

from goinst.handlerctx import CarrierNames, infer, infer_or_placeholder
from goinst.injector import Injector
from goinst.parser import parse_source
from goinst.printer import print_node
from goinst.remover import Remover


def inject(text):
    output, entry = Injector().inject_source(text, "main.go")
    return (output if output is not None else text), entry


def remove(text):
    output, entry = Remover().remove_source(text, "main.go")
    return (output if output is not None else text), entry


def params_of(signature, header=""):
    unit = parse_source("package main\n\n" + header + "func " + signature + " {}\n")
    fn = list(unit.funcs())[0]
    return fn.params, CarrierNames.for_unit(unit)


SERVER = """package main

import (
\t"net/http"
)

func main() {
\thttp.HandleFunc("/", index)
\thttp.ListenAndServe(":8080", nil)
}

func index(w http.ResponseWriter, r *http.Request) {
\tresp, err := http.Get("http://example.com")
\tif err != nil {
\t\treturn
\t}
\tdefer resp.Body.Close()
}
"""

CLIENT = """package client

import (
\t"context"
\t"net/http"
)

func Fetch(ctx context.Context, url string) (*http.Response, error) {
\treturn http.DefaultClient.Get(url)
}

func NewClient() *http.Client {
\treturn &http.Client{Timeout: 0}
}
"""


class ContextInferenceTests(unittest.TestCase):
    def test_request_pointer_with_response_writer(self) -> None:
        params, names = params_of("h(w http.ResponseWriter, r *http.Request)")
        self.assertEqual(print_node(infer(params, names)), "r.Context()")

    def test_single_context_parameter_is_used_unchanged(self) -> None:
        params, names = params_of("h(ctx context.Context)")
        self.assertEqual(print_node(infer(params, names)), "ctx")

    def test_context_wins_over_request(self) -> None:
        params, names = params_of("h(r *http.Request, ctx context.Context)")
        self.assertEqual(print_node(infer(params, names)), "ctx")

    def test_framework_carriers(self) -> None:
        cases = {
            "h(c *gin.Context)": "c.Request.Context()",
            "h(c *fiber.Ctx) error": "c.UserContext()",
            "h(ctx *fasthttp.RequestCtx)": "ctx",
            "h(c echo.Context) error": "c.Request().Context()",
        }
        for signature, expected in cases.items():
            params, names = params_of(signature)
            self.assertEqual(print_node(infer(params, names)), expected, signature)

    def test_no_shape_yields_placeholder(self) -> None:
        params, names = params_of("h(n int, s string)")
        self.assertIsNone(infer(params, names))
        self.assertEqual(print_node(infer_or_placeholder(params, names)), "nil")

    def test_lone_request_and_blank_names_are_ignored(self) -> None:
        params, names = params_of("h(r *http.Request)")
        self.assertIsNone(infer(params, names))
        params, names = params_of("h(_ context.Context, n int)")
        self.assertIsNone(infer(params, names))

    def test_aliased_context_package(self) -> None:
        params, names = params_of("h(c stdctx.Context)", header='import stdctx "context"\n\n')
        self.assertEqual(names.context, "stdctx")
        self.assertEqual(print_node(infer(params, names)), "c")


class NetHttpPolicyTests(unittest.TestCase):
    def test_handler_and_client_rewrites(self) -> None:
        out, entry = inject(SERVER)
        self.assertIn('http.HandleFunc("/", whataphttp.Func(index))', out)
        self.assertIn('resp, err := whataphttp.HttpGet(r.Context(), "http://example.com")', out)
        self.assertIn('"github.com/whatap/go-api/instrumentation/net/http/whataphttp"', out)
        self.assertEqual(entry.transformers, ["nethttp"])

    def test_server_round_trip(self) -> None:
        out, _ = inject(SERVER)
        self.assertEqual(remove(out)[0], SERVER)

    def test_default_client_and_literal(self) -> None:
        out, _ = inject(CLIENT)
        self.assertIn("return whataphttp.DefaultClientGet(ctx, url)", out)
        self.assertIn("Transport: whataphttp.NewRoundTripWithEmptyTransport(nil)", out)
        self.assertEqual(remove(out)[0], CLIENT)

    def test_context_is_recomputed_per_call_site(self) -> None:
        text = """package main

import (
\t"net/http"

\t"github.com/gin-gonic/gin"
)

func main() {
\tr := gin.Default()
\tr.GET("/", func(c *gin.Context) {
\t\thttp.Get("http://a")
\t})
\thttp.Get("http://b")
}
"""
        out, _ = inject(text)
        self.assertIn('whataphttp.HttpGet(c.Request.Context(), "http://a")', out)
        self.assertIn('whataphttp.HttpGet(nil, "http://b")', out)
        self.assertEqual(remove(out)[0], text)


if __name__ == "__main__":
    unittest.main()
