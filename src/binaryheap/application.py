import argparse
import json
import logging
import os
import sys
import threading

from typing import Iterable, List, override

import jsonschema
import jsonschema.exceptions
import yaml

from prometheus_client import start_http_server
from prometheus_client.core import GaugeMetricFamily, REGISTRY
from prometheus_client.metrics_core import Metric
from prometheus_client.registry import Collector, CollectorRegistry

from binaryheap.heap import BinaryHeap, Comparator, key_comparator, natural_order, reverse_order


class ConfigError( Exception ):
    pass


class LogFormatter( logging.Formatter ):
    """ Keeps every log record on a single line """
    def __init__( self, fmt=None, datefmt=None ):
        super().__init__( fmt=fmt, datefmt=datefmt )
        self.string_formatter = logging.Formatter( "%(levelname)s:%(name)s:%(message)s" )

    @override
    def format( self, record ) -> str:
        return self.string_formatter.format( record ).replace( "\n", "\\n" )


class Application:
    def __init__( self, args, stdout=None, registry: CollectorRegistry=REGISTRY ):
        self._args = args
        self._registry = registry
        self._collector = None
        self._parsed_args = self.get_arg_parser().parse_args( self._args[1:] )
        self._stdout = stdout if stdout is not None else sys.stdout
        self._config = {}
        self.setup_logging()

    def get_arg_parser( self ) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="binaryheap",
            description="Orders the items of a document with a binary heap")
        parser.add_argument('-c', '--config',
                            help='Path to the input document',
                            default='config.yml',
                            dest='config_file')
        parser.add_argument('--prometheus-port',
                            help='The port the prometheus client will bind to. Metrics are not '
                                 'exported unless this is given',
                            default=None,
                            dest='prometheus_port')
        return parser

    def get_config_schema_filename( self ) -> str:
        return os.path.join( os.path.dirname( __file__ ), "config.schema.json" )

    def _get_resource_file_contents( self, file_path: str ) -> str:
        if os.path.exists( file_path ):
            with open( file_path, 'r', encoding='utf-8' ) as f:
                return f.read()
        raise FileNotFoundError( f"Could not find resource file {file_path}" )

    def _get_yaml_resource_file_contents( self, file_path: str ) -> object:
        return yaml.safe_load( self._get_resource_file_contents( file_path ) )

    def _get_schema_from_file( self, file_path: str ) -> object | None:
        try:
            content = self._get_resource_file_contents( file_path )
            if file_path.endswith( '.json' ):
                return json.loads( content )
            if file_path.endswith( '.yaml' ) or file_path.endswith( '.yml' ):
                return yaml.safe_load( content )
        except (OSError, ValueError, yaml.YAMLError):
            logging.warning( "Unable to load schema file %s", file_path )
            return None

        logging.warning( "unable to identify the content of resource file %s", file_path )
        return None

    def _get_config( self, config_filename: str | None, schema_filename: str | None ) -> dict:
        config = None
        if config_filename is not None:
            try:
                config = self._get_yaml_resource_file_contents( config_filename )
            except (yaml.YAMLError, UnicodeDecodeError) as e:
                raise ConfigError( f"Unable to parse {config_filename}: {e}" ) from e
            except OSError as e:
                raise ConfigError( f"Unable to read {config_filename}: {e}" ) from e
        if config is None:
            logging.warning( "Using an empty config file" )
            config = {}

        schema = None
        if schema_filename is not None and os.path.exists( schema_filename ):
            schema = self._get_schema_from_file( schema_filename )
        if schema is None:
            logging.warning( "Unable to find config schema file %s", schema_filename )
        else:
            try:
                jsonschema.validate( instance=config, schema=schema ) # type: ignore
            except jsonschema.exceptions.ValidationError as e:
                raise ConfigError( f"Error validating {config_filename}: {e.message}" ) from e
            except jsonschema.exceptions.SchemaError as e:
                raise ConfigError( f"Error validating schema {schema_filename}: {e.message}" ) from e

        if not isinstance( config, dict ):
            raise ConfigError( f"Expected a mapping in {config_filename}, not {type( config ).__name__}" )
        logging.debug( config )
        return config

    def setup_collector( self ):
        # Registering the same collector twice is an error in prometheus_client
        if self._collector is not None:
            return

        class CustomCollector(Collector):
            @override
            def collect( self ) -> Iterable[Metric]:
                return [
                    GaugeMetricFamily(
                        'python_threads',
                        'The number of threads reported by python\'s threading.active_count()',
                        value=threading.active_count())]

        self._collector = CustomCollector()
        self._registry.register( self._collector )

    def start_prometheus( self ):
        start_http_server( int( self._parsed_args.prometheus_port ), registry=self._registry )

    def setup_logging( self ):
        default_level = os.environ.get( 'DEFAULT_LOG_LEVEL', 'info' ).upper()
        if isinstance( logging.getLevelName( default_level ), int ):
            logging.getLogger().setLevel( logging.getLevelName( default_level ) )
        else:
            logging.warning( "Unexpected log level `%s` for `DEFAULT_LOG_LEVEL`", default_level )

        # FOO_BAR_LOG_LEVEL sets the level of the `foo_bar` logger
        for key in \
            filter( lambda x: x.endswith( '_LOG_LEVEL' ) and x != 'DEFAULT_LOG_LEVEL',
                    os.environ ):

            level = logging.getLevelName( os.environ[key].upper() )
            if not isinstance( level, int ):
                logging.warning( "Unexpected log level `%s` for `%s`", os.environ[key], key )
                continue

            logging.getLogger( key[:-len( '_LOG_LEVEL' )].lower() ).setLevel( level=level )

        # Replace the default handlers. Records go to stderr; stdout carries the output.
        logging.getLogger().handlers = []
        handler = logging.StreamHandler( stream=sys.stderr )
        handler.setFormatter( LogFormatter() )
        logging.getLogger().addHandler( handler )

        def custom_hook( args ):
            logging.exception( args )
        threading.excepthook = custom_hook

    def main( self ) -> int:
        # Once per application: the collector and the exporter both outlive main()
        if self._parsed_args.prometheus_port is not None and self._collector is None:
            self.setup_collector()
            self.start_prometheus()

        return 0


class HeapSortApplication( Application ):
    @override
    def get_arg_parser( self ) -> argparse.ArgumentParser:
        parser = super().get_arg_parser()
        parser.add_argument('--order',
                            help='Overrides the order given in the input document',
                            choices=['ascending', 'descending'],
                            default=None,
                            dest='order')
        return parser

    def get_comparator( self ) -> Comparator:
        order = self._parsed_args.order
        if order is None:
            order = self._config.get( 'order', 'ascending' )
        reverse = order == 'descending'

        key = self._config.get( 'key' )
        if key is not None:
            return key_comparator( lambda item: item[key], reverse=reverse )
        return reverse_order if reverse else natural_order

    def sort( self ) -> List[object]:
        items = self._config.get( 'items', [] )
        key = self._config.get( 'key' )
        if key is not None:
            missing = [item for item in items if key not in item]
            if len( missing ) > 0:
                raise ConfigError( f"{len( missing )} item(s) have no `{key}` field" )

        # The reservation never needs to be larger than the document
        capacity = min( self._config.get( 'capacity', len( items ) ), len( items ) )
        heap = BinaryHeap( capacity, self.get_comparator() )
        result = []
        try:
            for item in items:
                heap.insert( item )

            logging.info( "sorting %d items", heap.size() )
            while not heap.is_empty():
                result.append( heap.extract_min() )
        except TypeError as e:
            raise ConfigError( f"Items cannot be compared with each other: {e}" ) from e
        return result

    @override
    def main( self ) -> int:
        result = super().main()
        if result != 0:
            return result

        try:
            self._config = self._get_config( config_filename=self._parsed_args.config_file,
                                             schema_filename=self.get_config_schema_filename() )
            items = self.sort()
        except ConfigError as e:
            logging.error( "%s", e )
            return 1

        for item in items:
            self._stdout.write( json.dumps( item, default=str ) + "\n" )
        return 0


def main():
    sys.exit( HeapSortApplication( sys.argv ).main() )


if __name__ == '__main__':
    main()
