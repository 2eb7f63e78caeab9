# mongostore

A storage server that keeps crew logs and resource files (oxygen, food,
garbage) inside one fixed-size blocks file. A superblock holds the block
size, the block count and an allocation bitmap. Each stored file is a small
`KEY=VALUE` metadata file that lists the blocks holding its contents.

Clients talk to the server over TCP with packets made of an operation code,
a payload size and a payload (`mongostore.protocol`). They can:

- check that the server is up (`IS_ON`, answered with an `OK` response);
- register a crew member, which creates its log file (`START_CREW`);
- report movements and task starts and ends, which are appended to the
  crew member's log (`MOVE_TO`, `RUN_TASK`, `FINISH_TASK`,
  `RESOLVE_SABOTAGE`, `FINISH_SABOTAGE`);
- run I/O tasks such as `GENERAR_OXIGENO`, `CONSUMIR_COMIDA` or
  `DESCARTAR_BASURA`, which add fill characters to a resource file, remove
  them, or delete the garbage file (`IO_TASK`);
- ask for a crew member's log (`GET_LOG`).

On `SIGUSR1` the server takes the next sabotage position from its
configuration, connects to the coordinator, sends it the position and waits
for the crew member sent to fix it. It then checks and repairs the file
system: first the block total in the superblock, then the bitmap, then each
resource file's `BLOCKS` (through its stored MD5), `BLOCK_COUNT` and `SIZE`.
It answers `OK` if it fixed something and `FAIL` if it found nothing.
`SIGINT` flushes the blocks file and stops the server.

## Installing

```
pip install .
```

## Running

```
mongostore --config path/to/i-Mongo-Store.config
```

Options:

- `--config` — configuration file (default `../i-Mongo-Store.config`).
- `--reset ask|yes|no` — whether to reset the file system before starting.
  With `ask` (the default) the server asks on the terminal.
- `--reset-script` — shell script run as `sh <script> <mount point>` when a
  reset is chosen (default `../volar_polus.sh`).

The server then creates whatever is missing under the mount point (the
`Files/Bitacoras` directories, `SuperBloque.ims`, `Blocks.ims`), opens the
file system, syncs the blocks to disk every `TIEMPO_SINCRONIZACION` seconds
in the background, and serves each client in its own thread. An existing
superblock's geometry wins over the configured one.

The configuration file uses `KEY=VALUE` lines:

```
PUNTO_MONTAJE=/tmp/polus
PATH_ARCHIVO_LOG=mongo.log
TIEMPO_SINCRONIZACION=15
IP_I_MONGO_STORE=127.0.0.1
PUERTO_ESCUCHA=5002
IP_DISCORDIADOR=127.0.0.1
PUERTO_DISCORDIADOR=5001
BLOCKS=64
BLOCK_SIZE=32
POSICIONES_SABOTAJE=[1|2,3|4]
```

## Using it as a library

```python
from mongostore.store import FileSystem
from mongostore.sabotage import SabotageChecker

with FileSystem.open("/tmp/polus", block_size=32, blocks=64) as fs:
    fs.create_resource_file("Oxigeno.ims", "O")
    fs.append("OOOOO", fs.files_path("Oxigeno.ims"), True)
    print(fs.read_resource("GENERAR_OXIGENO"))   # OOOOO
    fs.remove_chars("O", 2, fs.files_path("Oxigeno.ims"))

    fs.create_log_file(1)
    fs.append("hello\n", fs.log_path(1), False)
    print(fs.read_log(1))

    print(SabotageChecker(fs).resolve(1))
```

The pieces can also be used on their own: `Superblock` and `Bitmap`
(`mongostore.superblock`), `BlockStore` (`mongostore.blocks`), `MetadataFile`
(`mongostore.metadata`), and the packet types and decoders in
`mongostore.protocol`.

## What it does not do

This package is only the storage server. The coordinator that receives
sabotage positions and the other station modules that send it messages are
not included; the reset script is not included either and must be supplied
by the user. Patota start messages are read and logged but not stored.

## Tests

```
pip install .[test]
pytest
```