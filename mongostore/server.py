"""The store's server: message handling, task processing, sabotages and start-up."""

from __future__ import annotations

import argparse
import logging
import os
import signal
import socket
import subprocess
import threading
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .metadata import MetadataFile
from .net import connect, send_packet, start_server, wait_for_client
from .protocol import (
    IOTask,
    OpCode,
    Position,
    Response,
    decode_io_task,
    decode_log_task,
    decode_mongo_move,
    decode_start_crew,
    decode_start_patota,
    log_reply_packet,
    read_exact,
    read_sabotage_crew,
    read_uint32,
    response_packet,
    sabotage_packet,
)
from .sabotage import SabotageChecker
from .store import FileSystem, fill_char_for_task, resource_file_for_task

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "../i-Mongo-Store.config"
DEFAULT_RESET_SCRIPT = "../volar_polus.sh"

_CONSUMABLE = ("OXIGENO", "COMIDA")


@dataclass
class Settings:
    """Values read from the store's configuration file."""

    mount_point: str
    log_file: str
    sync_interval: float
    host: str
    port: str
    discordiador_host: str
    discordiador_port: str
    blocks: int
    block_size: int
    sabotage_positions: list[Position] = field(default_factory=list)


def _parse_position(text: str) -> Position:
    parts = text.split("|")
    if len(parts) != 2:
        raise ValueError(f"bad sabotage position {text!r}")
    return Position(int(parts[0]), int(parts[1]))


def load_settings(path) -> Settings:
    """Read the configuration file at ``path``."""
    config = MetadataFile.load(path)
    try:
        positions = (
            [_parse_position(item) for item in config.get_list("POSICIONES_SABOTAJE")]
            if "POSICIONES_SABOTAJE" in config
            else []
        )
        return Settings(
            mount_point=config["PUNTO_MONTAJE"].strip(),
            log_file=config["PATH_ARCHIVO_LOG"].strip(),
            sync_interval=float(config.get_int("TIEMPO_SINCRONIZACION")),
            host=config["IP_I_MONGO_STORE"].strip(),
            port=config["PUERTO_ESCUCHA"].strip(),
            discordiador_host=config["IP_DISCORDIADOR"].strip(),
            discordiador_port=config["PUERTO_DISCORDIADOR"].strip(),
            blocks=config.get_int("BLOCKS"),
            block_size=config.get_int("BLOCK_SIZE"),
            sabotage_positions=positions,
        )
    except KeyError as exc:
        raise ValueError(f"configuration {path} lacks key {exc.args[0]}") from None


class MongoStore:
    """Serves the other station modules on top of a :class:`FileSystem`."""

    def __init__(self, settings: Settings, fs: FileSystem) -> None:
        self.settings = settings
        self.fs = fs
        self.checker = SabotageChecker(fs)
        self.sabotage_positions = list(settings.sabotage_positions)
        self._task_lock = threading.Lock()
        self._sabotage_lock = threading.Lock()

    # -- messages ---------------------------------------------------------

    def handle_message(self, op_code, stream, sock) -> None:
        """Read the payload of one message from ``stream`` and act on it."""
        size = read_uint32(stream)
        try:
            op = OpCode(op_code)
        except ValueError:
            logger.warning("Unknown operation code %s", op_code)
            if size:
                read_exact(stream, size)
            return

        if op is OpCode.IS_ON:
            logger.info("We are on")
            send_packet(sock, response_packet(Response.OK))
        elif op is OpCode.START_PATOTA:
            patota = decode_start_patota(stream)
            logger.info("START_PATOTA received for patota %d", patota.patota_id)
        elif op is OpCode.START_CREW:
            crew = decode_start_crew(stream)
            logger.info("START_CREW received for crew member %d", crew.id)
            if self.fs.create_log_file(crew.id):
                logger.info("Log of crew member %d created", crew.id)
            else:
                logger.warning("Log of crew member %d already existed", crew.id)
        elif op is OpCode.GET_LOG:
            crew_id = read_uint32(stream)
            logger.info("GET_LOG received for crew member %d", crew_id)
            send_packet(sock, log_reply_packet(self.fs.read_log(crew_id)))
            logger.info("Log of crew member %d sent", crew_id)
        elif op is OpCode.IO_TASK:
            task = decode_io_task(stream)
            logger.info("IO task %s received from crew member %d", task.name, task.crew_id)
            self.run_task(task)
        elif op is OpCode.MOVE_TO:
            move = decode_mongo_move(stream)
            self.write_log(
                f"El tripulante {move.crew_id} se mueve de {move.origin} a {move.destination}\n",
                move.crew_id,
            )
        elif op is OpCode.RUN_TASK:
            task = decode_log_task(stream)
            self.write_log(
                f"El tripulante {task.crew_id} comienza ejecución de tarea {task.name}\n",
                task.crew_id,
            )
        elif op is OpCode.FINISH_TASK:
            task = decode_log_task(stream)
            self.write_log(
                f"El tripulante {task.crew_id} finaliza la tarea {task.name}\n",
                task.crew_id,
            )
        elif op in (OpCode.RESOLVE_SABOTAGE, OpCode.FINISH_SABOTAGE):
            self._log_sabotage_step(op, size, stream)
        elif size:
            read_exact(stream, size)

    def _log_sabotage_step(self, op: OpCode, size: int, stream) -> None:
        if size < 4:
            if size:
                read_exact(stream, size)
            logger.warning("%s received without a crew member", op.name)
            return
        crew_id = read_uint32(stream)
        if size > 4:
            read_exact(stream, size - 4)
        if op is OpCode.RESOLVE_SABOTAGE:
            text = "Se corre en pánico hacia la ubicación del sabotaje\n"
        else:
            text = "Se resuelve el sabotaje\n"
        self.write_log(text, crew_id)

    def serve_client(self, sock: socket.socket) -> None:
        """Handle messages from one client until it disconnects."""
        with sock:
            while True:
                try:
                    op_code = read_uint32(sock)
                except (EOFError, OSError):
                    return
                try:
                    self.handle_message(op_code, sock, sock)
                except (EOFError, OSError):
                    return
                except ValueError:
                    logger.exception("Bad message with operation code %d", op_code)

    def serve_forever(self) -> None:
        """Accept clients forever, one thread each."""
        server = start_server(self.settings.host, self.settings.port)
        with server:
            while True:
                client = wait_for_client(server)
                threading.Thread(target=self.serve_client, args=(client,), daemon=True).start()

    # -- tasks and logs ---------------------------------------------------

    def run_task(self, task: IOTask) -> None:
        """Apply an IO task to its resource file, creating the file when needed."""
        with self._task_lock:
            try:
                file_name = resource_file_for_task(task.name)
            except ValueError:
                logger.warning("Task %s works on no resource", task.name)
                return
            if not self.fs.resource_exists(file_name):
                if not self._handle_missing_file(task, file_name):
                    return
            self._apply_task(task, file_name)

    def _handle_missing_file(self, task: IOTask, file_name: str) -> bool:
        if "GENERAR" in task.name:
            self.fs.create_resource_file(file_name, fill_char_for_task(task.name))
            logger.info("Resource file %s created", file_name)
            return True
        if "CONSUMIR" in task.name:
            logger.error("File %s does not exist. Finishing task %s", file_name, task.name)
        elif task.name == "DESCARTAR_BASURA":
            logger.error("File %s does not exist. Finishing task DESCARTAR_BASURA", file_name)
        return False

    def _apply_task(self, task: IOTask, file_name: str) -> None:
        path = self.fs.files_path(file_name)
        if "GENERAR" in task.name:
            if task.parameter:
                fill = fill_char_for_task(task.name)
                logger.info("Filling %s with %d %s", path, task.parameter, fill)
                self.fs.append(fill * task.parameter, path, True)
        elif "CONSUMIR" in task.name:
            if any(resource in task.name for resource in _CONSUMABLE):
                self.fs.remove_chars(fill_char_for_task(task.name), task.parameter, path)
        elif task.name == "DESCARTAR_BASURA":
            self.fs.remove_resource_file(file_name)
            logger.info("Resource file %s discarded", file_name)

    def write_log(self, text: str, crew_id: int) -> bool:
        """Append ``text`` to a crew member's log; False if the log does not exist."""
        path = self.fs.log_path(crew_id)
        if not os.path.exists(path):
            logger.error("Could not open %s for writing", path)
            return False
        logger.info("Writing to the log: %s", text)
        self.fs.append(text, path, False)
        return True

    # -- sabotages ----------------------------------------------------------

    def has_sabotages(self) -> bool:
        return bool(self.sabotage_positions)

    def trigger_sabotage(self) -> Optional[Response]:
        """Announce the next sabotage and let the crew member sent resolve it."""
        with self._sabotage_lock:
            if not self.has_sabotages():
                logger.warning("No sabotage positions left")
                return None
            try:
                sock = connect(self.settings.discordiador_host, self.settings.discordiador_port)
            except ConnectionError:
                logger.error("Could not connect to the discordiador")
                return None
            with sock:
                position = self.sabotage_positions.pop(0)
                logger.info("Sending sabotage position %s", position)
                send_packet(sock, sabotage_packet(position))
                crew = read_sabotage_crew(sock)
                logger.info("Crew member %d sent to resolve the sabotage", crew.id)
                response = self.checker.resolve(crew.id)
                send_packet(sock, response_packet(response))
            return response

    def _on_sabotage_signal(self, signum, frame) -> None:
        self.trigger_sabotage()

    def _on_interrupt(self, signum, frame) -> None:
        logger.info("MONGO STORE FINISHED")
        self.fs.close()
        raise SystemExit(0)

    def install_signal_handlers(self) -> None:
        """SIGUSR1 triggers a sabotage; SIGINT shuts the store down."""
        sigusr1 = getattr(signal, "SIGUSR1", None)
        if sigusr1 is not None:
            signal.signal(sigusr1, self._on_sabotage_signal)
        signal.signal(signal.SIGINT, self._on_interrupt)


def _ask_reset() -> bool:
    try:
        answer = input("Desea reiniciar el FileSystem? (SI=1 | NO=0) :")
    except EOFError:
        return False
    try:
        return int(answer.strip() or "0") != 0
    except ValueError:
        return False


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="File system store of the station.")
    parser.add_argument("--config", default=DEFAULT_CONFIG, help="configuration file")
    parser.add_argument(
        "--reset", choices=("ask", "yes", "no"), default="ask",
        help="reset the file system before starting",
    )
    parser.add_argument("--reset-script", default=DEFAULT_RESET_SCRIPT)
    args = parser.parse_args(argv)

    settings = load_settings(args.config)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        handlers=[logging.FileHandler(settings.log_file), logging.StreamHandler()],
    )
    logger.info("Store configuration read")

    reset = args.reset == "yes" or (args.reset == "ask" and _ask_reset())
    if reset:
        subprocess.run(["sh", args.reset_script, settings.mount_point], check=False)

    fs = FileSystem.open(settings.mount_point, settings.block_size, settings.blocks)
    fs.store.start_sync(settings.sync_interval)
    store = MongoStore(settings, fs)
    store.install_signal_handlers()
    try:
        store.serve_forever()
    finally:
        fs.close()
    return 0