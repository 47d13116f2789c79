from django.core.management.base import BaseCommand

from collection.tasks import ingest_applications_from_excel


class Command(BaseCommand):
    help = "Enqueue background ingestion of applications from an Excel file."

    def add_arguments(self, parser):
        parser.add_argument("filename", nargs="?", default="applications.xlsx")
        parser.add_argument("--sync", action="store_true", help="Run the import in this process instead of a worker.")

    def handle(self, *args, **options):
        filename = options["filename"]
        if options["sync"]:
            result = ingest_applications_from_excel(filename)
            self.stdout.write(
                self.style.SUCCESS(
                    f"Imported {result['created']} applications and {result['collection_created']} collection rows, "
                    f"skipped {result['skipped']}"
                )
            )
            return
        result = ingest_applications_from_excel.delay(filename)
        self.stdout.write(self.style.SUCCESS(f"Enqueued application ingestion: {result.id}"))
