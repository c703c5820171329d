import base64
import json
import pickle
import typing as tp

from swrproxy._exceptions import StorageError
from swrproxy._headers import Headers
from swrproxy._models import Response

try:
    import yaml
except ImportError:  # pragma: no cover
    yaml = None  # type: ignore

__all__ = ("PickleSerializer", "JSONSerializer", "YAMLSerializer", "BaseSerializer")


def _response_to_dict(response: Response) -> tp.Dict[str, tp.Any]:
    return {
        "status_code": response.status_code,
        "headers": [[key, value] for key, value in response.headers.multi_items()],
        "content": base64.b64encode(response.content).decode("ascii"),
    }


def _response_from_dict(full_dict: tp.Any) -> Response:
    try:
        response_dict = full_dict["response"]
        return Response(
            status_code=int(response_dict["status_code"]),
            headers=Headers([(key, value) for key, value in response_dict["headers"]]),
            content=base64.b64decode(response_dict["content"].encode("ascii")),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise StorageError(f"Could not decode the stored response: {exc!r}") from exc


class BaseSerializer:
    def dumps(self, response: Response) -> tp.Union[str, bytes]:
        raise NotImplementedError()

    def loads(self, data: tp.Union[str, bytes]) -> Response:
        raise NotImplementedError()

    @property
    def is_binary(self) -> bool:
        raise NotImplementedError()


class PickleSerializer(BaseSerializer):
    """
    A simple pickle-based serializer.
    """

    def dumps(self, response: Response) -> tp.Union[str, bytes]:
        """
        Dumps the cached response.

        :param response: A cached response
        :type response: Response
        :return: Serialized response
        :rtype: tp.Union[str, bytes]
        """
        return pickle.dumps(response)

    def loads(self, data: tp.Union[str, bytes]) -> Response:
        """
        Loads the cached response from serialized data.

        :param data: Serialized data
        :type data: tp.Union[str, bytes]
        :return: The cached response
        :rtype: Response
        """
        assert isinstance(data, bytes)
        return tp.cast(Response, pickle.loads(data))

    @property
    def is_binary(self) -> bool:  # pragma: no cover
        return True


class JSONSerializer(BaseSerializer):
    """A simple json-based serializer."""

    def dumps(self, response: Response) -> tp.Union[str, bytes]:
        """
        Dumps the cached response.

        :param response: A cached response
        :type response: Response
        :return: Serialized response
        :rtype: tp.Union[str, bytes]
        """
        return json.dumps({"response": _response_to_dict(response)}, indent=4)

    def loads(self, data: tp.Union[str, bytes]) -> Response:
        """
        Loads the cached response from serialized data.

        :param data: Serialized data
        :type data: tp.Union[str, bytes]
        :return: The cached response
        :rtype: Response
        """
        try:
            full_json = json.loads(data)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Could not decode the stored response: {exc!r}") from exc

        return _response_from_dict(full_json)

    @property
    def is_binary(self) -> bool:
        return False


class YAMLSerializer(BaseSerializer):
    """A simple yaml-based serializer."""

    def dumps(self, response: Response) -> tp.Union[str, bytes]:
        """
        Dumps the cached response.

        :param response: A cached response
        :type response: Response
        :return: Serialized response
        :rtype: tp.Union[str, bytes]
        """
        if yaml is None:  # pragma: no cover
            raise RuntimeError(
                f"The `{type(self).__name__}` was used, but the required packages were not found. "
                "Check that you have `swrproxy` installed with the `yaml` extension as shown.\n"
                "```pip install swrproxy[yaml]```"
            )
        return tp.cast(str, yaml.safe_dump({"response": _response_to_dict(response)}, sort_keys=False))

    def loads(self, data: tp.Union[str, bytes]) -> Response:
        """
        Loads the cached response from serialized data.

        :param data: Serialized data
        :type data: tp.Union[str, bytes]
        :return: The cached response
        :rtype: Response
        """
        if yaml is None:  # pragma: no cover
            raise RuntimeError(
                f"The `{type(self).__name__}` was used, but the required packages were not found. "
                "Check that you have `swrproxy` installed with the `yaml` extension as shown.\n"
                "```pip install swrproxy[yaml]```"
            )

        full_yaml = yaml.safe_load(data)
        return _response_from_dict(full_yaml)

    @property
    def is_binary(self) -> bool:  # pragma: no cover
        return False
