from classifier.model import Support, Classification
from classifier.classifier import Classifier
