import unittest

from goinst.injector import Injector
from goinst.remover import Remover


def inject(text):
    output, entry = Injector().inject_source(text, "client.go")
    return (output if output is not None else text), entry


def remove(text):
    output, entry = Remover().remove_source(text, "client.go")
    return (output if output is not None else text), entry


GRPC_SERVER = """package rpc

import (
\t"google.golang.org/grpc"
)

func NewServer() *grpc.Server {
\treturn grpc.NewServer()
}

func NewServerWith(opts []grpc.ServerOption) *grpc.Server {
\treturn grpc.NewServer(opts...)
}
"""

GRPC_CLIENT = """package rpc

import (
\t"google.golang.org/grpc"
\t"google.golang.org/grpc/credentials/insecure"
)

func Dial(addr string) (*grpc.ClientConn, error) {
\treturn grpc.Dial(addr, grpc.WithTransportCredentials(insecure.NewCredentials()))
}
"""

K8S_CLIENT = """package kube

import (
\t"k8s.io/client-go/kubernetes"
\t"k8s.io/client-go/rest"
)

func Client() (*kubernetes.Clientset, error) {
\tcfg, err := rest.InClusterConfig()
\tif err != nil {
\t\treturn nil, err
\t}
\tclientset, err := kubernetes.NewForConfig(cfg)
\treturn clientset, err
}
"""

SARAMA_PRODUCER = """package kafka

import (
\t"github.com/IBM/sarama"
)

func Producer(brokers []string) (sarama.SyncProducer, error) {
\tconfig := sarama.NewConfig()
\tconfig.Producer.Return.Successes = true
\treturn sarama.NewSyncProducer(brokers, config)
}
"""

GOREDIS_V8 = """package cache

import (
\t"github.com/go-redis/redis/v8"
)

func New(addr string) *redis.Client {
\treturn redis.NewClient(&redis.Options{Addr: addr})
}
"""


class GrpcTests(unittest.TestCase):
    def test_server_options_are_appended(self) -> None:
        out, entry = inject(GRPC_SERVER)
        self.assertEqual(entry.transformers, ["grpc"])
        self.assertIn(
            "return grpc.NewServer(grpc.UnaryInterceptor(whatapgrpc.UnaryServerInterceptor()), "
            "grpc.StreamInterceptor(whatapgrpc.StreamServerInterceptor()))",
            out,
        )
        self.assertIn('"github.com/whatap/go-api/instrumentation/google.golang.org/grpc/whatapgrpc"', out)

    def test_spread_options_are_merged_with_append(self) -> None:
        out, _ = inject(GRPC_SERVER)
        self.assertIn(
            "return grpc.NewServer(append(opts, grpc.UnaryInterceptor(whatapgrpc.UnaryServerInterceptor()), "
            "grpc.StreamInterceptor(whatapgrpc.StreamServerInterceptor()))...)",
            out,
        )

    def test_server_round_trip(self) -> None:
        out, _ = inject(GRPC_SERVER)
        self.assertEqual(remove(out)[0], GRPC_SERVER)

    def test_client_interceptors(self) -> None:
        out, _ = inject(GRPC_CLIENT)
        self.assertIn("grpc.WithUnaryInterceptor(whatapgrpc.UnaryClientInterceptor())", out)
        self.assertIn("grpc.WithStreamInterceptor(whatapgrpc.StreamClientInterceptor())", out)
        self.assertEqual(remove(out)[0], GRPC_CLIENT)


class KubernetesTests(unittest.TestCase):
    def test_config_is_wrapped_before_client(self) -> None:
        out, entry = inject(K8S_CLIENT)
        self.assertEqual(entry.transformers, ["k8s"])
        self.assertIn(
            "\tcfg.Wrap(whatapkubernetes.WrapRoundTripper())\n\tclientset, err := kubernetes.NewForConfig(cfg)\n",
            out,
        )
        self.assertEqual(out.count("WrapRoundTripper"), 1)

    def test_round_trip(self) -> None:
        out, _ = inject(K8S_CLIENT)
        self.assertEqual(remove(out)[0], K8S_CLIENT)


class SaramaTests(unittest.TestCase):
    def test_interceptors_follow_config(self) -> None:
        out, _ = inject(SARAMA_PRODUCER)
        self.assertIn(
            "\tconfig := sarama.NewConfig()\n"
            "\twhatapInterceptor := &whatapsarama.Interceptor{}\n"
            "\tconfig.Producer.Interceptors = []sarama.ProducerInterceptor{whatapInterceptor}\n"
            "\tconfig.Consumer.Interceptors = []sarama.ConsumerInterceptor{whatapInterceptor}\n",
            out,
        )

    def test_round_trip(self) -> None:
        out, _ = inject(SARAMA_PRODUCER)
        self.assertEqual(remove(out)[0], SARAMA_PRODUCER)


class RedisTests(unittest.TestCase):
    def test_v8_variant_selects_its_companion(self) -> None:
        out, entry = inject(GOREDIS_V8)
        self.assertEqual(entry.transformers, ["goredis"])
        self.assertIn("return whatapgoredis.NewClient(&redis.Options{Addr: addr})", out)
        self.assertIn("github.com/go-redis/redis/v8/whatapgoredis", out)
        self.assertEqual(remove(out)[0], GOREDIS_V8)

    def test_v9_variant(self) -> None:
        text = GOREDIS_V8.replace("github.com/go-redis/redis/v8", "github.com/redis/go-redis/v9")
        out, _ = inject(text)
        self.assertIn("github.com/redis/go-redis/v9/whatapgoredis", out)
        self.assertEqual(remove(out)[0], text)

    def test_redigo_dial(self) -> None:
        text = (
            "package cache\n\nimport (\n\t\"github.com/gomodule/redigo/redis\"\n)\n\n"
            "func Dial() (redis.Conn, error) {\n\treturn redis.Dial(\"tcp\", \":6379\")\n}\n"
        )
        out, _ = inject(text)
        self.assertIn('return whatapredigo.Dial("tcp", ":6379")', out)
        self.assertEqual(remove(out)[0], text)


if __name__ == "__main__":
    unittest.main()
